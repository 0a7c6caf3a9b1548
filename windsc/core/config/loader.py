"""
Configuration loader — reads windsc.yml into typed declarations.

The file holds provider-level connection defaults and a list of
feature declarations. Each declaration may override any connection
field; overrides win key by key over the defaults, except that the
credential fields are replaced as one group.

    connection:
      host: 10.0.0.5
      username: Administrator
      password_env: WINDSC_SSH_PASSWORD
    features:
      - name: Web-Server
        sub_features: [Web-Asp-Net45]
        connection:
          host: 10.0.0.6
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from windsc.core.engine.lifecycle import derive_identity
from windsc.core.models.connection import Connection, HostKeyPolicy
from windsc.core.models.feature import DesiredState, Presence

logger = logging.getLogger(__name__)

# Default config filename
CONFIG_FILE = "windsc.yml"

CREDENTIAL_FIELDS = (
    "password",
    "password_env",
    "private_key_path",
    "private_key_passphrase_env",
)


class ConfigError(Exception):
    """Raised when windsc configuration is invalid or missing."""


class ConnectionSettings(BaseModel):
    """Connection fields as written in windsc.yml. Every field is optional
    so the same shape serves as both defaults and per-feature override."""

    host: str | None = None
    port: int | None = None
    username: str | None = None
    password: str | None = Field(default=None, repr=False)
    password_env: str | None = None
    private_key_path: str | None = None
    private_key_passphrase_env: str | None = None
    connect_timeout: float | None = None
    host_key_policy: HostKeyPolicy | None = None
    known_hosts_path: str | None = None

    def merged(self, override: ConnectionSettings | None) -> ConnectionSettings:
        """Return these settings with every field set in ``override`` replaced.

        Credentials move as a group: an override that sets any of
        CREDENTIAL_FIELDS replaces all of them.
        """
        if override is None:
            return self
        update = override.model_dump(exclude_none=True)
        if any(name in update for name in CREDENTIAL_FIELDS):
            for name in CREDENTIAL_FIELDS:
                update.setdefault(name, None)
        return self.model_copy(update=update)


class FeatureDeclaration(BaseModel):
    """One feature entry under ``features:``."""

    name: str
    key: str = ""
    ensure: Presence = Presence.PRESENT
    include_all_sub_features: bool = False
    sub_features: list[str] = Field(default_factory=list)
    connection: ConnectionSettings | None = None

    @field_validator("ensure", mode="before")
    @classmethod
    def _normalize_ensure(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().capitalize()
        return value

    @property
    def address(self) -> str:
        """Stable key of this declaration in the state file."""
        return self.key or self.name

    def to_desired(self) -> DesiredState:
        return DesiredState(
            feature_name=self.name,
            presence=self.ensure,
            include_all_sub_features=self.include_all_sub_features,
            sub_features=tuple(self.sub_features),
        )


class WindscConfig(BaseModel):
    """Root of windsc.yml."""

    connection: ConnectionSettings = Field(default_factory=ConnectionSettings)
    features: list[FeatureDeclaration] = Field(default_factory=list)

    def get_feature(self, address: str) -> FeatureDeclaration | None:
        """Look up a declaration by address (key or name)."""
        for feature in self.features:
            if feature.address == address:
                return feature
        return None

    def connection_for(self, feature: FeatureDeclaration) -> Connection:
        """Resolve the effective Connection for a declaration.

        Raises:
            ConfigError: If a required field is missing or a referenced
                environment variable is not set.
        """
        return resolve_connection(self.connection.merged(feature.connection), feature.address)


def resolve_connection(settings: ConnectionSettings, address: str = "") -> Connection:
    """Turn merged settings into a Connection, reading secrets from the environment."""
    where = f" for feature '{address}'" if address else ""

    if not settings.host:
        raise ConfigError(f"No connection host configured{where}")
    if not settings.username:
        raise ConfigError(f"No connection username configured{where}")

    password = settings.password
    if settings.password_env:
        password = os.environ.get(settings.password_env)
        if password is None:
            raise ConfigError(
                f"Environment variable {settings.password_env} is not set{where}"
            )

    passphrase = None
    if settings.private_key_passphrase_env:
        passphrase = os.environ.get(settings.private_key_passphrase_env)
        if passphrase is None:
            raise ConfigError(
                f"Environment variable {settings.private_key_passphrase_env} is not set{where}"
            )

    key_path = settings.private_key_path
    if key_path:
        key_path = str(Path(key_path).expanduser())

    fields = {
        "host": settings.host,
        "username": settings.username,
        "password": password,
        "private_key_path": key_path,
        "private_key_passphrase": passphrase,
        "connect_timeout": settings.connect_timeout,
        "known_hosts_path": settings.known_hosts_path,
    }
    if settings.port is not None:
        fields["port"] = settings.port
    if settings.host_key_policy is not None:
        fields["host_key_policy"] = settings.host_key_policy

    try:
        return Connection(**fields)
    except ValidationError as e:
        raise ConfigError(f"Invalid connection settings{where}: {e}") from e


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for windsc.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to windsc.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def load_config(path: Path | None = None) -> WindscConfig:
    """Load and validate windsc.yml.

    Args:
        path: Explicit path to the config file. If None, searches upward.

    Raises:
        ConfigError: If the file is missing or invalid.
    """
    if path is None:
        path = find_config_file()

    if path is None:
        raise ConfigError(f"No {CONFIG_FILE} found. Create one, or specify --config.")

    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    try:
        config = WindscConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

    seen: set[str] = set()
    for feature in config.features:
        if feature.address in seen:
            raise ConfigError(f"Duplicate feature address '{feature.address}' in {path}")
        seen.add(feature.address)

    # Windows feature names and host names are case-insensitive
    identities: dict[str, str] = {}
    for feature in config.features:
        host = config.connection.merged(feature.connection).host
        if not host:
            continue
        identity = derive_identity(feature.name, host).lower()
        if identity in identities:
            raise ConfigError(
                f"Features '{identities[identity]}' and '{feature.address}' "
                f"both manage {feature.name} on {host} in {path}"
            )
        identities[identity] = feature.address

    logger.info("Loaded %d feature declaration(s) from %s", len(config.features), path)
    return config


def config_root(config_path: Path) -> Path:
    """Directory holding the config file; .state/ lives beside it."""
    return config_path.parent.resolve()
