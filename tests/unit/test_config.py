"""
Unit tests for client configuration.

Tests defaults, validation, file loading and environment overrides.
"""

import json

import pytest
import yaml

from sealedcompute.config import (
    FinalizationConfig,
    SealedComputeConfig,
    _coerce_value,
    create_default_config,
    load_config,
    save_config,
)


class TestDefaults:

    def test_default_values(self):
        config = SealedComputeConfig()
        assert config.key_fetch.max_attempts == 10
        assert config.key_fetch.retry_delay == 0.5
        assert config.finalization.timeout == 120.0
        assert config.submission.max_correlation_attempts == 3
        assert config.validate() == []

    def test_key_fetch_retry_config(self):
        retry = SealedComputeConfig().key_fetch.retry_config()
        assert retry.max_attempts == 10
        assert retry.base_delay == 0.5
        assert retry.jitter is False

    def test_create_default_config_overrides(self):
        config = create_default_config(cluster_context="mainnet")
        assert config.cluster_context == "mainnet"

    def test_create_default_config_unknown_key(self):
        with pytest.raises(ValueError, match="Unknown configuration key"):
            create_default_config(bogus=1)


class TestValidate:

    def test_errors(self):
        config = SealedComputeConfig(finalization=FinalizationConfig(timeout=0))
        issues = config.validate()
        assert any(i.startswith("error:") and "timeout" in i for i in issues)

    def test_warnings(self):
        config = SealedComputeConfig(
            log_level="LOUD",
            finalization=FinalizationConfig(timeout=1.0, poll_interval=5.0),
        )
        issues = config.validate()
        assert all(i.startswith("warning:") for i in issues)
        assert len(issues) == 2


class TestLoadConfig:

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "client.yaml"
        path.write_text(yaml.dump({"cluster_context": "devnet", "finalization": {"timeout": 30}}))
        config = load_config(path, env_override=False)
        assert config.cluster_context == "devnet"
        assert config.finalization.timeout == 30
        assert config.finalization.poll_interval == 0.5

    def test_load_json(self, tmp_path):
        path = tmp_path / "client.json"
        path.write_text(json.dumps({"submission": {"max_in_flight": 4}}))
        assert load_config(path, env_override=False).submission.max_in_flight == 4

    def test_env_overrides(self, tmp_path, monkeypatch):
        path = tmp_path / "client.yaml"
        path.write_text("cluster_context: devnet\n")
        monkeypatch.setenv("SEALED_COMPUTE_FINALIZATION__TIMEOUT", "300")
        monkeypatch.setenv("SEALED_COMPUTE_CLUSTER_CONTEXT", "mainnet")
        config = load_config(path)
        assert config.finalization.timeout == 300
        assert config.cluster_context == "mainnet"

    def test_unknown_env_override_is_ignored(self, tmp_path, monkeypatch, caplog):
        path = tmp_path / "client.yaml"
        path.write_text("key_fetch:\n  max_attempts: 4\n")
        monkeypatch.setenv("SEALED_COMPUTE_KEY_FETCH__FOO", "1")
        monkeypatch.setenv("SEALED_COMPUTE_NOT_A_SETTING", "x")
        monkeypatch.setenv("SEALED_COMPUTE_FINALIZATION__TIMEOUT__DEEP", "5")
        config = load_config(path)
        assert config.key_fetch.max_attempts == 4
        assert config.finalization.timeout == 120.0
        assert "SEALED_COMPUTE_KEY_FETCH__FOO" in caplog.text

    def test_string_settings_are_not_coerced(self, tmp_path, monkeypatch):
        path = tmp_path / "client.yaml"
        path.write_text("{}\n")
        monkeypatch.setenv("SEALED_COMPUTE_CLUSTER_CONTEXT", "123")
        monkeypatch.setenv("SEALED_COMPUTE_LOG_LEVEL", "debug")
        config = load_config(path)
        assert config.cluster_context == "123"
        assert config.log_level == "debug"

    def test_invalid_config_raises(self, tmp_path):
        path = tmp_path / "client.yaml"
        path.write_text(yaml.dump({"key_fetch": {"max_attempts": 0}}))
        with pytest.raises(ValueError, match="max_attempts"):
            load_config(path, env_override=False)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml")

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "client.toml"
        path.write_text("")
        with pytest.raises(ValueError, match="Unsupported"):
            load_config(path)

    def test_save_then_load(self, tmp_path):
        path = tmp_path / "nested" / "client.yaml"
        save_config(create_default_config(cluster_context="devnet"), path)
        assert load_config(path, env_override=False).cluster_context == "devnet"


class TestCoerceValue:

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("10", 10),
            ("0.5", 0.5),
            ("true", True),
            ("no", False),
            ("null", None),
            ('{"a": 1}', {"a": 1}),
            ("devnet", "devnet"),
        ],
    )
    def test_coercion(self, raw, expected):
        assert _coerce_value(raw) == expected
