"""
Receipt model — the result of running one remote command.

Channels never raise for a failed command: the outcome is captured
here instead, and the engine decides what a failure means.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Receipt(BaseModel):
    """Captured outcome of a remote command.

    ``output`` holds stdout, ``error`` holds stderr (or a transport error
    message) when the command failed. ``exit_status`` is None when the
    command never produced one, for example when the session dropped.
    """

    channel: str
    host: str = ""
    status: Literal["ok", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    error: str | None = None
    exit_status: int | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the command succeeded."""
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        """Whether the command failed."""
        return self.status == "failed"

    @classmethod
    def success(
        cls,
        channel: str,
        output: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a success receipt."""
        kwargs.setdefault("exit_status", 0)
        return cls(channel=channel, status="ok", output=output, **kwargs)

    @classmethod
    def failure(
        cls,
        channel: str,
        error: str,
        **kwargs: Any,
    ) -> Receipt:
        """Create a failure receipt."""
        return cls(channel=channel, status="failed", error=error, **kwargs)
