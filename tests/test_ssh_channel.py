"""
Tests for the SSH channel — credential selection, failure mapping, receipts.

paramiko.SSHClient is replaced with a recording fake; nothing here
opens a socket.
"""

import io
import threading
from pathlib import Path

import paramiko
import pytest

from windsc.adapters.base import channel_scope
from windsc.adapters.ssh import channel as ssh_channel
from windsc.adapters.ssh.channel import SSHChannel, open_ssh_channel
from windsc.core.errors import RemoteConnectionError
from windsc.core.models.connection import Connection, HostKeyPolicy


class _FakeStream:
    def __init__(self, data: bytes, exit_status: int = 0):
        self._buf = io.BytesIO(data)
        self.channel = self
        self._exit_status = exit_status

    def read(self) -> bytes:
        return self._buf.read()

    def recv_exit_status(self) -> int:
        return self._exit_status


class _StdoutAfterStderr(_FakeStream):
    """stdout that cannot reach EOF until stderr has been read, like a full window."""

    def __init__(self, data: bytes, stderr_read: threading.Event):
        super().__init__(data)
        self._stderr_read = stderr_read
        self.saw_stderr_read = False

    def read(self) -> bytes:
        self.saw_stderr_read = self._stderr_read.wait(timeout=5)
        return super().read()


class _SignallingStream(_FakeStream):
    def __init__(self, data: bytes, read_done: threading.Event, exit_status: int = 0):
        super().__init__(data, exit_status)
        self._read_done = read_done

    def read(self) -> bytes:
        data = super().read()
        self._read_done.set()
        return data


class _BrokenStream(_FakeStream):
    def read(self) -> bytes:
        raise paramiko.SSHException("stderr channel lost")


class FakeSSHClient:
    """Stand-in for paramiko.SSHClient that records how it was used."""

    instances: list["FakeSSHClient"] = []
    connect_error: Exception | None = None
    load_error: Exception | None = None

    def __init__(self):
        self.connect_kwargs: dict | None = None
        self.policy = None
        self.closed = False
        self.host_keys_from: str | None = None
        self.response = (b"", b"", 0)
        self.exec_error: Exception | None = None
        self.streams: tuple | None = None
        FakeSSHClient.instances.append(self)

    def load_system_host_keys(self):
        if FakeSSHClient.load_error:
            raise FakeSSHClient.load_error
        self.host_keys_from = "system"

    def load_host_keys(self, path):
        if FakeSSHClient.load_error:
            raise FakeSSHClient.load_error
        self.host_keys_from = path

    def set_missing_host_key_policy(self, policy):
        self.policy = policy

    def connect(self, **kwargs):
        self.connect_kwargs = kwargs
        if FakeSSHClient.connect_error:
            raise FakeSSHClient.connect_error

    def exec_command(self, command):
        if self.exec_error:
            raise self.exec_error
        if self.streams:
            return (None, *self.streams)
        out, err, status = self.response
        return None, _FakeStream(out, status), _FakeStream(err, status)

    def close(self):
        self.closed = True


@pytest.fixture
def fake_client(monkeypatch):
    FakeSSHClient.instances = []
    FakeSSHClient.connect_error = None
    FakeSSHClient.load_error = None
    monkeypatch.setattr(ssh_channel.paramiko, "SSHClient", FakeSSHClient)
    return FakeSSHClient


@pytest.fixture
def key_file(tmp_path: Path) -> Path:
    path = tmp_path / "id_ed25519"
    path.write_text("not a real key")
    return path


class TestCredentialSelection:
    def test_password(self, fake_client):
        conn = Connection(host="win01", username="admin", password="pw")
        channel = open_ssh_channel(conn)
        kwargs = fake_client.instances[0].connect_kwargs
        assert kwargs["password"] == "pw"
        assert "key_filename" not in kwargs
        assert kwargs["allow_agent"] is False
        assert kwargs["look_for_keys"] is False
        assert channel.host == "win01"

    def test_key_wins_over_password(self, fake_client, key_file):
        conn = Connection(
            host="win01",
            username="admin",
            password="pw",
            private_key_path=str(key_file),
            private_key_passphrase="phrase",
        )
        open_ssh_channel(conn)
        kwargs = fake_client.instances[0].connect_kwargs
        assert kwargs["key_filename"] == str(key_file)
        assert kwargs["passphrase"] == "phrase"
        assert "password" not in kwargs

    def test_no_credentials_fail_before_network(self, fake_client):
        conn = Connection(host="win01", username="admin")
        with pytest.raises(RemoteConnectionError, match="No authentication") as exc:
            open_ssh_channel(conn)
        assert exc.value.phase == "connecting"
        assert fake_client.instances == []

    def test_missing_key_file(self, fake_client, tmp_path):
        conn = Connection(
            host="win01", username="admin", private_key_path=str(tmp_path / "missing")
        )
        with pytest.raises(RemoteConnectionError, match="Private key not found"):
            open_ssh_channel(conn)
        assert fake_client.instances == []

    def test_port_and_timeout(self, fake_client):
        conn = Connection(
            host="win01", port=2222, username="admin", password="pw", connect_timeout=5
        )
        open_ssh_channel(conn)
        kwargs = fake_client.instances[0].connect_kwargs
        assert kwargs["port"] == 2222
        assert kwargs["timeout"] == 5


class TestHostKeys:
    @pytest.mark.parametrize(
        ("policy", "expected"),
        [
            (HostKeyPolicy.REJECT, paramiko.RejectPolicy),
            (HostKeyPolicy.WARN, paramiko.WarningPolicy),
            (HostKeyPolicy.AUTO_ADD, paramiko.AutoAddPolicy),
        ],
    )
    def test_policy(self, fake_client, policy, expected):
        conn = Connection(host="win01", username="admin", password="pw", host_key_policy=policy)
        open_ssh_channel(conn)
        assert isinstance(fake_client.instances[0].policy, expected)

    def test_known_hosts_path(self, fake_client, tmp_path):
        path = tmp_path / "known_hosts"
        conn = Connection(
            host="win01", username="admin", password="pw", known_hosts_path=str(path)
        )
        open_ssh_channel(conn)
        assert fake_client.instances[0].host_keys_from == str(path)

    def test_unreadable_known_hosts(self, fake_client):
        fake_client.load_error = PermissionError("denied")
        conn = Connection(host="win01", username="admin", password="pw")
        with pytest.raises(RemoteConnectionError, match="known hosts"):
            open_ssh_channel(conn)
        assert fake_client.instances[0].closed


class TestConnectFailures:
    @pytest.mark.parametrize(
        "error",
        [
            paramiko.AuthenticationException("Authentication failed."),
            paramiko.SSHException("Error reading SSH protocol banner"),
            OSError(113, "No route to host"),
            TimeoutError("timed out"),
        ],
    )
    def test_mapped_to_remote_connection_error(self, fake_client, error):
        fake_client.connect_error = error
        conn = Connection(host="win01", username="admin", password="pw")
        with pytest.raises(RemoteConnectionError) as exc:
            open_ssh_channel(conn)
        assert exc.value.cause is error
        assert exc.value.__cause__ is error
        assert exc.value.host == "win01"
        assert fake_client.instances[0].closed

    def test_password_not_in_error(self, fake_client):
        fake_client.connect_error = paramiko.AuthenticationException("Authentication failed.")
        conn = Connection(host="win01", username="admin", password="hunter2")
        with pytest.raises(RemoteConnectionError) as exc:
            open_ssh_channel(conn)
        assert "hunter2" not in str(exc.value)


class TestRun:
    def _channel(self, fake_client) -> tuple[SSHChannel, FakeSSHClient]:
        channel = open_ssh_channel(Connection(host="win01", username="admin", password="pw"))
        return channel, fake_client.instances[0]

    def test_success(self, fake_client):
        channel, client = self._channel(fake_client)
        client.response = (b"WINDSC-STATE Installed\r\n", b"", 0)
        receipt = channel.run("whatever")
        assert receipt.ok
        assert receipt.output == "WINDSC-STATE Installed\r\n"
        assert receipt.exit_status == 0
        assert receipt.channel == "ssh"

    def test_non_zero_exit(self, fake_client):
        channel, client = self._channel(fake_client)
        client.response = (b"partial", b"Start-DscConfiguration : failed\r\n", 1)
        receipt = channel.run("whatever")
        assert receipt.failed
        assert receipt.exit_status == 1
        assert receipt.error == "Start-DscConfiguration : failed"
        assert receipt.output == "partial"

    def test_non_zero_exit_without_stderr(self, fake_client):
        channel, client = self._channel(fake_client)
        client.response = (b"", b"", 3)
        receipt = channel.run("whatever")
        assert receipt.error == "Command exited with code 3"

    def test_stderr_read_while_stdout_open(self, fake_client):
        channel, client = self._channel(fake_client)
        stderr_read = threading.Event()
        stdout = _StdoutAfterStderr(b"WINDSC-APPLY OK\r\n", stderr_read)
        client.streams = (stdout, _SignallingStream(b"VERBOSE: " * 4096, stderr_read))
        receipt = channel.run("whatever")
        assert stdout.saw_stderr_read
        assert receipt.ok
        assert receipt.output == "WINDSC-APPLY OK\r\n"
        assert receipt.metadata["stderr"].startswith("VERBOSE:")

    def test_stderr_transport_error_becomes_receipt(self, fake_client):
        channel, client = self._channel(fake_client)
        client.streams = (_FakeStream(b"out"), _BrokenStream(b""))
        receipt = channel.run("whatever")
        assert receipt.failed
        assert "stderr channel lost" in receipt.error

    def test_transport_error_becomes_receipt(self, fake_client):
        channel, client = self._channel(fake_client)
        client.exec_error = paramiko.SSHException("session dropped")
        receipt = channel.run("whatever")
        assert receipt.failed
        assert "session dropped" in receipt.error
        assert receipt.exit_status is None

    def test_invalid_utf8_replaced(self, fake_client):
        channel, client = self._channel(fake_client)
        client.response = (b"ok \xff\xfe", b"", 0)
        assert channel.run("whatever").ok

    def test_closed_channel(self, fake_client):
        channel, client = self._channel(fake_client)
        channel.close()
        receipt = channel.run("whatever")
        assert receipt.failed
        assert client.closed

    def test_close_idempotent(self, fake_client):
        channel, client = self._channel(fake_client)
        channel.close()
        channel.close()
        assert channel.closed


class TestChannelScope:
    def test_closes_on_exception(self, fake_client):
        conn = Connection(host="win01", username="admin", password="pw")
        with pytest.raises(RuntimeError):
            with channel_scope(open_ssh_channel, conn):
                raise RuntimeError("boom")
        assert fake_client.instances[0].closed

    def test_close_error_does_not_mask(self, fake_client, monkeypatch):
        conn = Connection(host="win01", username="admin", password="pw")

        def bad_close(self):
            raise OSError("socket already gone")

        monkeypatch.setattr(FakeSSHClient, "close", bad_close)
        with pytest.raises(RuntimeError, match="boom"):
            with channel_scope(open_ssh_channel, conn):
                raise RuntimeError("boom")
