"""
SSH channel — run commands on a Windows host through OpenSSH.

Built on paramiko. Each channel owns one SSHClient; each command gets
its own exec session, so commands never share shell state.
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path

import paramiko

from windsc.adapters.base import RemoteChannel
from windsc.core.errors import RemoteConnectionError
from windsc.core.models.connection import AuthMethod, Connection, HostKeyPolicy
from windsc.core.models.receipt import Receipt

logger = logging.getLogger(__name__)

_POLICIES: dict[HostKeyPolicy, type[paramiko.MissingHostKeyPolicy]] = {
    HostKeyPolicy.REJECT: paramiko.RejectPolicy,
    HostKeyPolicy.WARN: paramiko.WarningPolicy,
    HostKeyPolicy.AUTO_ADD: paramiko.AutoAddPolicy,
}


def _drain(stream, sink: list) -> None:
    """Read ``stream`` to EOF into ``sink``; a transport error is stored instead."""
    try:
        sink.append(stream.read())
    except (paramiko.SSHException, OSError) as e:
        sink.append(e)


class SSHChannel(RemoteChannel):
    """Execute commands over an authenticated paramiko client."""

    def __init__(self, client: paramiko.SSHClient, host: str):
        self._client = client
        self._host = host
        self._closed = False

    @property
    def name(self) -> str:
        return "ssh"

    @property
    def host(self) -> str:
        return self._host

    @property
    def closed(self) -> bool:
        return self._closed

    def run(self, command: str) -> Receipt:
        if self._closed:
            return Receipt.failure(
                channel=self.name,
                host=self._host,
                error="Channel is closed",
            )

        logger.debug("Running remote command on %s (%d chars)", self._host, len(command))
        start = time.monotonic()

        try:
            _stdin, stdout, stderr = self._client.exec_command(command)
            # Both windows must drain or a chatty stderr stalls the remote side
            stderr_data: list = []
            reader = threading.Thread(target=_drain, args=(stderr, stderr_data), daemon=True)
            reader.start()
            output = stdout.read().decode("utf-8", errors="replace")
            reader.join()
            if isinstance(stderr_data[0], Exception):
                raise stderr_data[0]
            error_text = stderr_data[0].decode("utf-8", errors="replace")
            exit_status = stdout.channel.recv_exit_status()
        except (paramiko.SSHException, OSError) as e:
            return Receipt.failure(
                channel=self.name,
                host=self._host,
                error=f"Command execution error: {e}",
                duration_ms=int((time.monotonic() - start) * 1000),
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)

        if exit_status == 0:
            return Receipt.success(
                channel=self.name,
                host=self._host,
                output=output,
                exit_status=exit_status,
                duration_ms=elapsed_ms,
                metadata={"stderr": error_text.strip()},
            )
        return Receipt.failure(
            channel=self.name,
            host=self._host,
            error=error_text.strip() or f"Command exited with code {exit_status}",
            output=output,
            exit_status=exit_status,
            duration_ms=elapsed_ms,
        )

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._client.close()


def open_ssh_channel(connection: Connection) -> SSHChannel:
    """Open an authenticated SSH channel.

    Key authentication wins over password authentication. With neither
    configured the call fails before any network traffic.

    Raises:
        RemoteConnectionError: On missing credentials, unreadable keys,
            authentication failure, or network errors.
    """
    method = connection.auth_method
    if method == AuthMethod.NONE:
        raise RemoteConnectionError(
            "No authentication method configured (password or private key)",
            host=connection.host,
            phase="connecting",
        )

    kwargs: dict = {
        "hostname": connection.host,
        "port": connection.port,
        "username": connection.username,
        "timeout": connection.connect_timeout,
        "allow_agent": False,
        "look_for_keys": False,
    }
    if method == AuthMethod.KEY:
        key_path = Path(connection.private_key_path or "").expanduser()
        if not key_path.is_file():
            raise RemoteConnectionError(
                f"Private key not found: {key_path}",
                host=connection.host,
                phase="connecting",
            )
        kwargs["key_filename"] = str(key_path)
        kwargs["passphrase"] = connection.private_key_passphrase
    else:
        kwargs["password"] = connection.password

    client = paramiko.SSHClient()
    try:
        if connection.known_hosts_path:
            client.load_host_keys(str(Path(connection.known_hosts_path).expanduser()))
        else:
            client.load_system_host_keys()
    except OSError as e:
        client.close()
        raise RemoteConnectionError(
            "Cannot load known hosts",
            host=connection.host,
            phase="connecting",
            cause=e,
        ) from e
    client.set_missing_host_key_policy(_POLICIES[connection.host_key_policy]())

    logger.debug(
        "Connecting to %s as %s (auth=%s)", connection.address, connection.username, method
    )
    try:
        client.connect(**kwargs)
    except (paramiko.SSHException, OSError) as e:
        client.close()
        raise RemoteConnectionError(
            "SSH connection failed",
            host=connection.host,
            phase="connecting",
            cause=e,
        ) from e

    logger.info("SSH connection established to %s", connection.address)
    return SSHChannel(client, connection.host)
