"""
PowerShell helpers — identifier validation, quoting and encoding.

User-supplied names are data, never code. They are validated against a
strict pattern, emitted as single-quoted literals, and the finished
script travels base64-encoded through ``-EncodedCommand`` so the remote
shell never parses any of it.
"""

from __future__ import annotations

import base64
import re

from windsc.core.errors import InvalidIdentifierError

POWERSHELL = "powershell.exe"
POWERSHELL_ARGS = ("-NoProfile", "-NonInteractive", "-ExecutionPolicy", "Bypass")

MAX_IDENTIFIER_LENGTH = 256

# cmd.exe, the default OpenSSH shell on Windows, rejects longer command lines
MAX_COMMAND_LENGTH = 8191

# Windows feature names look like Web-Server, NET-Framework-45-Core, RSAT-AD-PowerShell
_IDENTIFIER = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

_ENCODED = re.compile(r"-EncodedCommand\s+([A-Za-z0-9+/=]+)\s*$")


def validate_identifier(value: str, kind: str = "feature name") -> str:
    """Return ``value`` if it is a safe feature identifier.

    Raises:
        InvalidIdentifierError: If the value is empty, too long, or
            contains characters outside ``[A-Za-z0-9._-]``.
    """
    if not value:
        raise InvalidIdentifierError(f"Empty {kind}")
    if len(value) > MAX_IDENTIFIER_LENGTH:
        raise InvalidIdentifierError(
            f"{kind.capitalize()} longer than {MAX_IDENTIFIER_LENGTH} characters"
        )
    if not _IDENTIFIER.fullmatch(value):
        raise InvalidIdentifierError(
            f"Invalid {kind} {value!r}: only letters, digits, '.', '_' and '-' are allowed"
        )
    return value


def quote(value: str) -> str:
    """Single-quoted PowerShell string literal for ``value``."""
    return "'" + value.replace("'", "''") + "'"


def encode_command(script: str) -> str:
    """Full command line that runs ``script`` through -EncodedCommand."""
    encoded = base64.b64encode(script.encode("utf-16-le")).decode("ascii")
    return " ".join((POWERSHELL, *POWERSHELL_ARGS, "-EncodedCommand", encoded))


def decode_command(command: str) -> str | None:
    """Recover the script from an ``encode_command`` string, or None."""
    match = _ENCODED.search(command)
    if not match:
        return None
    return base64.b64decode(match.group(1)).decode("utf-16-le")
