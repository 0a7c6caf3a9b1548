"""
Connection model — how to reach and authenticate against a Windows host.

A Connection is a plain value. Where it came from (provider-level
defaults or a per-feature override) is the config layer's business;
the engine only ever receives one explicitly.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AuthMethod(StrEnum):
    """Credential method selected for a connection."""

    KEY = "key"
    PASSWORD = "password"
    NONE = "none"


class HostKeyPolicy(StrEnum):
    """What to do with a host key that is not in known_hosts."""

    REJECT = "reject"
    WARN = "warn"
    AUTO_ADD = "auto_add"


class Connection(BaseModel):
    """Connection parameters for one remote host.

    Exactly one credential method is used. A private key wins over a
    password when both are set. With neither, opening the channel fails.
    """

    model_config = ConfigDict(frozen=True)

    host: str
    port: int = 22
    username: str
    password: str | None = Field(default=None, repr=False)
    private_key_path: str | None = None
    private_key_passphrase: str | None = Field(default=None, repr=False)
    connect_timeout: float | None = None
    host_key_policy: HostKeyPolicy = HostKeyPolicy.WARN
    known_hosts_path: str | None = None

    @field_validator("host", "username")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @property
    def auth_method(self) -> AuthMethod:
        """The credential method that will be used to authenticate."""
        if self.private_key_path:
            return AuthMethod.KEY
        if self.password:
            return AuthMethod.PASSWORD
        return AuthMethod.NONE

    @property
    def address(self) -> str:
        """``host:port`` for log messages."""
        return f"{self.host}:{self.port}"
