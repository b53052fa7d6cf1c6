from __future__ import annotations

from pathlib import Path

import pytest

from memctl.config import (
    DEFAULT_API_URL,
    get_config_path,
    get_env_overrides,
    load_config,
    read_config_file,
    write_config_file,
)


def test_read_config_file_rejects_invalid_json(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{not-json}")
    with pytest.raises(ValueError, match="invalid config json"):
        read_config_file(config_path)


def test_read_config_file_rejects_non_object(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("[1, 2]")
    with pytest.raises(ValueError, match="config must be an object"):
        read_config_file(config_path)


def test_get_config_path_honors_env(monkeypatch, tmp_path: Path) -> None:
    target = tmp_path / "alt.json"
    monkeypatch.setenv("MEMCTL_CONFIG", str(target))
    assert get_config_path() == target


def test_load_config_defaults(tmp_path: Path) -> None:
    cfg = load_config(tmp_path / "missing.json")

    assert cfg.api_url == DEFAULT_API_URL
    assert cfg.rate_limit == 500
    assert cfg.claim_ttl_minutes == 30
    assert cfg.block_on_soft_full is False


def test_load_config_reads_file_then_env(monkeypatch, tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    write_config_file(
        {"api_url": "https://mem.example/api/v1", "org": "acme", "rate_limit": 200}, config_path
    )
    monkeypatch.setenv("MEMCTL_RATE_LIMIT", "50")
    monkeypatch.setenv("MEMCTL_BLOCK_ON_SOFT_FULL", "yes")

    cfg = load_config(config_path)

    assert cfg.api_url == "https://mem.example/api/v1"
    assert cfg.org == "acme"
    assert cfg.rate_limit == 50
    assert cfg.block_on_soft_full is True


def test_invalid_numbers_warn_and_keep_defaults(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("MEMCTL_RATE_LIMIT", "lots")
    monkeypatch.setenv("MEMCTL_CAPACITY_WARN_RATIO", "-1")

    with pytest.warns(RuntimeWarning):
        cfg = load_config(tmp_path / "missing.json")

    assert cfg.rate_limit == 500
    assert cfg.capacity_warn_ratio == 0.8


def test_get_env_overrides_only_includes_set_vars(monkeypatch) -> None:
    monkeypatch.setenv("MEMCTL_TOKEN", "secret")

    overrides = get_env_overrides()

    assert overrides["token"] == "secret"
    assert "org" not in overrides
