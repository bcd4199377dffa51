"""
Tests for IndexConfig.
"""
from pathlib import Path

import pytest
from pydantic import ValidationError

from keyvault_index.conf import IndexConfig, default_cache_dir, env_flag


class TestDefaults:
    """Tests for default values."""

    def test_defaults(self, monkeypatch, tmp_path):
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
        config = IndexConfig()
        assert config.cache_dir == tmp_path / "keyvault-index"
        assert config.kdf_iterations == 100_000
        assert config.batch_size == 5
        assert config.search_limit == 100
        assert config.include_values is False
        assert config.port == 3000

    def test_cache_files(self, tmp_path):
        config = IndexConfig(cache_dir=tmp_path)
        assert config.cache_file == tmp_path / "cache.dat"
        assert config.salt_file == tmp_path / "cache.salt"
        assert config.iv_file == tmp_path / "cache.iv"

    def test_home_fallback(self, monkeypatch):
        monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
        assert default_cache_dir() == Path.home() / ".config" / "keyvault-index"

    def test_expands_user(self):
        config = IndexConfig(cache_dir="~/vault-cache")
        assert config.cache_dir == Path.home() / "vault-cache"


class TestValidation:
    """Tests for rejected settings."""

    @pytest.mark.parametrize(
        "field, value",
        [
            ("batch_size", 0),
            ("batch_size", 101),
            ("kdf_iterations", 0),
            ("vault_timeout", 0),
            ("fuzzy_threshold", 1.5),
            ("port", 70000),
        ],
    )
    def test_out_of_range(self, field, value):
        with pytest.raises(ValidationError):
            IndexConfig(**{field: value})

    def test_warning_shorter_than_critical(self):
        with pytest.raises(ValidationError):
            IndexConfig(critical_days=30, warning_days=10)


class TestFromEnv:
    """Tests for IndexConfig.from_env."""

    def test_reads_prefixed_variables(self, monkeypatch, tmp_path):
        monkeypatch.setenv("KVINDEX_CACHE_DIR", str(tmp_path))
        monkeypatch.setenv("KVINDEX_BATCH_SIZE", "8")
        monkeypatch.setenv("KVINDEX_VAULT_TIMEOUT", "30")
        monkeypatch.setenv("KVINDEX_PORT", "8080")
        monkeypatch.setenv("KVINDEX_INCLUDE_VALUES", "true")
        config = IndexConfig.from_env()
        assert config.cache_dir == tmp_path
        assert config.batch_size == 8
        assert config.vault_timeout == 30.0
        assert config.port == 8080
        assert config.include_values is True

    def test_unset_variables_use_defaults(self, monkeypatch):
        for name in ("BATCH_SIZE", "INCLUDE_VALUES", "SEARCH_LIMIT"):
            monkeypatch.delenv(f"KVINDEX_{name}", raising=False)
        config = IndexConfig.from_env()
        assert config.batch_size == 5
        assert config.search_limit == 100
        assert config.include_values is False

    def test_invalid_variable(self, monkeypatch):
        monkeypatch.setenv("KVINDEX_BATCH_SIZE", "many")
        with pytest.raises(ValidationError):
            IndexConfig.from_env()

    @pytest.mark.parametrize("raw, expected", [
        ("1", True), ("YES", True), (" on ", True), ("0", False), ("nope", False),
    ])
    def test_env_flag(self, monkeypatch, raw, expected):
        monkeypatch.setenv("KVINDEX_SOMETHING", raw)
        assert env_flag("SOMETHING") is expected
