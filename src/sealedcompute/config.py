"""
SealedCompute Client Configuration.

This module provides the client configuration system that:
- Groups key-fetch, submission and finalization settings
- Supports YAML/JSON loading and environment variable overrides
- Validates settings before a client is built

Configuration Hierarchy:
    SealedComputeConfig (root)
    ├── key_fetch: KeyFetchConfig
    ├── submission: SubmissionConfig
    └── finalization: FinalizationConfig

Usage:
    # Load from YAML
    config = load_config("client.yaml")

    # Create programmatically
    config = SealedComputeConfig(
        finalization=FinalizationConfig(timeout=30.0),
    )

    # Environment variable overrides
    # SEALED_COMPUTE_FINALIZATION__TIMEOUT=300 python run.py
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Union

import yaml

from .reliability.retry import RetryConfig

logger = logging.getLogger(__name__)

ENV_PREFIX = "SEALED_COMPUTE_"


@dataclass
class KeyFetchConfig:
    """Cluster public key fetch policy."""
    max_attempts: int = 10
    retry_delay: float = 0.5  # seconds between attempts

    def retry_config(self) -> RetryConfig:
        return RetryConfig.fixed(max_attempts=self.max_attempts, delay=self.retry_delay)


@dataclass
class SubmissionConfig:
    """Request submission settings."""
    max_in_flight: int = 64
    max_correlation_attempts: int = 3  # regenerations on correlation id collision


@dataclass
class FinalizationConfig:
    """Finalization and result wait settings."""
    timeout: float = 120.0  # seconds, shared by finalization and result waits
    poll_interval: float = 0.5


@dataclass
class SealedComputeConfig:
    """
    Root client configuration.

    Attributes:
        cluster_context: Cluster/program context whose key is fetched
        log_level: Logging level for the CLI
    """
    cluster_context: str = "default"
    log_level: str = "INFO"
    key_fetch: KeyFetchConfig = field(default_factory=KeyFetchConfig)
    submission: SubmissionConfig = field(default_factory=SubmissionConfig)
    finalization: FinalizationConfig = field(default_factory=FinalizationConfig)

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of issues prefixed with "error:" or "warning:"
        """
        issues = []

        if self.key_fetch.max_attempts < 1:
            issues.append("error: key_fetch.max_attempts must be >= 1")
        if self.key_fetch.retry_delay < 0:
            issues.append("error: key_fetch.retry_delay must be non-negative")

        if self.submission.max_in_flight < 1:
            issues.append("error: submission.max_in_flight must be >= 1")
        if self.submission.max_correlation_attempts < 1:
            issues.append("error: submission.max_correlation_attempts must be >= 1")

        if self.finalization.timeout <= 0:
            issues.append("error: finalization.timeout must be positive")
        if self.finalization.poll_interval <= 0:
            issues.append("error: finalization.poll_interval must be positive")
        elif self.finalization.poll_interval > self.finalization.timeout:
            issues.append(
                "warning: finalization.poll_interval exceeds timeout; "
                "only one poll will be made"
            )

        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            issues.append(f"warning: unknown log_level {self.log_level!r}")

        return issues

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SealedComputeConfig:
        data = data or {}
        return cls(
            cluster_context=data.get("cluster_context", "default"),
            log_level=data.get("log_level", "INFO"),
            key_fetch=KeyFetchConfig(**(data.get("key_fetch") or {})),
            submission=SubmissionConfig(**(data.get("submission") or {})),
            finalization=FinalizationConfig(**(data.get("finalization") or {})),
        )


def load_config(
    path: Union[str, Path],
    env_override: bool = True,
    validate: bool = True,
) -> SealedComputeConfig:
    """
    Load configuration from YAML or JSON file.

    Args:
        path: Path to configuration file
        env_override: Allow environment variable overrides
        validate: Validate configuration after loading

    Returns:
        Loaded and optionally validated SealedComputeConfig

    Environment variable format:
        SEALED_COMPUTE_KEY_FETCH__MAX_ATTEMPTS=... -> key_fetch.max_attempts
        SEALED_COMPUTE_CLUSTER_CONTEXT=... -> cluster_context
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path) as f:
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(f) or {}
        elif path.suffix == ".json":
            data = json.load(f)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")

    if env_override:
        data = _apply_env_overrides(data)

    config = SealedComputeConfig.from_dict(data)

    if validate:
        for issue in config.validate():
            if issue.startswith("error:"):
                raise ValueError(issue)
            logger.warning(issue)

    logger.info(f"Loaded configuration from {path}")
    return config


def save_config(config: SealedComputeConfig, path: Union[str, Path]) -> None:
    """Save configuration to YAML or JSON file."""
    path = Path(path)
    data = config.to_dict()

    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        if path.suffix in (".yaml", ".yml"):
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
        elif path.suffix == ".json":
            json.dump(data, f, indent=2)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")

    logger.info(f"Saved configuration to {path}")


def create_default_config(**overrides: Any) -> SealedComputeConfig:
    """Default configuration with top-level overrides applied."""
    config = SealedComputeConfig()
    for key, value in overrides.items():
        if not hasattr(config, key):
            raise ValueError(f"Unknown configuration key: {key}")
        setattr(config, key, value)
    return config


_SECTIONS = {
    "key_fetch": KeyFetchConfig,
    "submission": SubmissionConfig,
    "finalization": FinalizationConfig,
}


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides to config data.

    Only known settings are overridden; anything else is logged and skipped.
    Top-level settings are strings and are taken verbatim.
    """
    top_level = {f.name for f in fields(SealedComputeConfig)} - set(_SECTIONS)

    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue

        # SEALED_COMPUTE_FINALIZATION__TIMEOUT -> ["finalization", "timeout"]
        parts = key[len(ENV_PREFIX):].lower().split("__")

        if len(parts) == 1 and parts[0] in top_level:
            data[parts[0]] = value
        elif (
            len(parts) == 2
            and parts[0] in _SECTIONS
            and parts[1] in {f.name for f in fields(_SECTIONS[parts[0]])}
        ):
            if not isinstance(data.get(parts[0]), dict):
                data[parts[0]] = {}
            data[parts[0]][parts[1]] = _coerce_value(value)
        else:
            logger.warning(f"Ignoring unknown configuration override {key}")

    return data


def _coerce_value(value: str) -> Any:
    """Coerce string value to appropriate type.

    Number check comes before boolean to avoid treating "0" as False
    and "1" as True when an integer is intended.
    """
    if value.lower() in ("none", "null", ""):
        return None

    try:
        if "." in value:
            return float(value)
        return int(value)
    except ValueError:
        pass

    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False

    if value.startswith(("[", "{")):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            pass

    return value
