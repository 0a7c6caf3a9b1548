"""
Config check use case — validate windsc.yml and report issues.

Everything here is offline: credentials are resolved from the
environment, names are checked against the identifier rules, but no
host is contacted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from windsc.core.config.loader import ConfigError, WindscConfig, find_config_file, load_config
from windsc.core.engine.compiler import validate_desired
from windsc.core.errors import WindscError
from windsc.core.models.connection import AuthMethod


@dataclass
class ConfigCheckResult:
    """Result of configuration validation."""

    valid: bool = False
    config: WindscConfig | None = None
    config_path: Path | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "config_path": str(self.config_path) if self.config_path else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "feature_count": len(self.config.features) if self.config else 0,
        }


def check_config(config_path: Path | None = None) -> ConfigCheckResult:
    """Validate windsc.yml and report issues."""
    result = ConfigCheckResult()

    if config_path is None:
        config_path = find_config_file()
    if config_path is None:
        result.errors.append("No windsc.yml found.")
        return result
    result.config_path = config_path

    try:
        config = load_config(config_path)
    except ConfigError as e:
        result.errors.append(str(e))
        return result
    result.config = config

    if not config.features:
        result.warnings.append("No features declared. Nothing will be managed.")

    if config.connection.password:
        result.warnings.append(
            "Provider connection has an inline password. Prefer password_env."
        )

    for decl in config.features:
        try:
            validate_desired(decl.to_desired())
        except (ValueError, WindscError) as e:
            result.errors.append(f"Feature '{decl.address}': {e}")

        if decl.include_all_sub_features and decl.sub_features:
            result.warnings.append(
                f"Feature '{decl.address}': sub_features are ignored "
                "because include_all_sub_features is set"
            )

        if decl.connection is not None and decl.connection.password:
            result.warnings.append(
                f"Feature '{decl.address}' has an inline password. Prefer password_env."
            )

        try:
            connection = config.connection_for(decl)
        except ConfigError as e:
            result.errors.append(str(e))
            continue

        if connection.auth_method == AuthMethod.NONE:
            result.errors.append(
                f"Feature '{decl.address}': no password or private key configured"
            )
        elif connection.password and connection.private_key_path:
            result.warnings.append(
                f"Feature '{decl.address}': both password and private key set; "
                "the private key is used"
            )

        key_path = connection.private_key_path
        if key_path and not Path(key_path).is_file():
            result.warnings.append(
                f"Feature '{decl.address}': private key not found: {key_path}"
            )

    result.valid = len(result.errors) == 0
    return result
