"""
Mock channel — an in-memory Windows host for tests and dry runs.

MockWindowsHost understands the two kinds of script windsc sends: the
inspector's query and the compiler's DSC configuration. Everything else
fails like an unknown command would.

Switches simulate the failure modes the reconciler must tell apart:
    refuse_connections → opener raises RemoteConnectionError
    fail_applies       → apply command exits non-zero
    ignore_applies     → apply reports success but changes nothing
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from windsc.adapters.base import RemoteChannel
from windsc.core.engine.powershell import decode_command
from windsc.core.errors import RemoteConnectionError
from windsc.core.models.connection import AuthMethod, Connection
from windsc.core.models.receipt import Receipt

_QUERY_NAME = re.compile(r"^\$name = '((?:[^']|'')*)'$", re.MULTILINE)
_RESOURCE = re.compile(r"WindowsFeature\s+Feature\s*\{(.*?)\}", re.DOTALL)
_SUB_LIST = re.compile(r"^\$subFeatures = @\((.*)\)$", re.MULTILINE)
_SUB_ENSURE = re.compile(
    r"foreach \(\$sub in \$subFeatures\).*?Ensure\s*=\s*'(Present|Absent)'", re.DOTALL
)
_QUOTED = re.compile(r"'((?:[^']|'')*)'")
_NAME = re.compile(r"Name\s*=\s*'((?:[^']|'')*)'")
_ENSURE = re.compile(r"Ensure\s*=\s*'(Present|Absent)'")
_INCLUDE_ALL = re.compile(r"IncludeAllSubFeature\s*=\s*\$(true|false)")


def _unquote(value: str) -> str:
    return value.replace("''", "'")


@dataclass
class MockFeature:
    """A feature known to the mock host."""

    name: str
    installed: bool = False
    sub_features: list[str] = field(default_factory=list)
    install_state: str | None = None  # overrides Installed/Available when set

    @property
    def state(self) -> str:
        if self.install_state:
            return self.install_state
        return "Installed" if self.installed else "Available"


class MockWindowsHost:
    """In-memory stand-in for a Windows Server host."""

    def __init__(self, name: str = "mock-host"):
        self.name = name
        self.features: dict[str, MockFeature] = {}
        self.refuse_connections = False
        self.fail_applies = False
        self.ignore_applies = False
        self.apply_count = 0
        self.query_count = 0
        self.commands: list[str] = []

    def add_feature(
        self,
        name: str,
        installed: bool = False,
        sub_features: list[str] | None = None,
    ) -> MockFeature:
        """Register a feature and its child features."""
        children = list(sub_features or [])
        for child in children:
            self.features.setdefault(child.lower(), MockFeature(name=child))
        feature = MockFeature(name=name, installed=installed, sub_features=children)
        self.features[name.lower()] = feature
        return feature

    def get(self, name: str) -> MockFeature | None:
        return self.features.get(name.lower())

    def is_installed(self, name: str) -> bool:
        feature = self.get(name)
        return bool(feature and feature.installed)

    # ── Command handling ─────────────────────────────────────────

    def execute(self, command: str) -> Receipt:
        self.commands.append(command)
        script = decode_command(command)
        if script is None:
            return Receipt.failure(
                channel="mock",
                host=self.name,
                error=f"Unrecognized command: {command[:80]}",
                exit_status=1,
            )
        if "Start-DscConfiguration" in script:
            return self._apply(script)
        if "Get-WindowsFeature" in script:
            return self._query(script)
        return Receipt.failure(
            channel="mock", host=self.name, error="Unrecognized script", exit_status=1
        )

    def _query(self, script: str) -> Receipt:
        self.query_count += 1
        match = _QUERY_NAME.search(script)
        if not match:
            return Receipt.failure(
                channel="mock", host=self.name, error="Query without a name", exit_status=1
            )
        name = _unquote(match.group(1))
        feature = self.get(name)
        if feature is None:
            lines = [f"WINDSC-FEATURE {name}", "WINDSC-STATE NotFound"]
        else:
            lines = [f"WINDSC-FEATURE {feature.name}", f"WINDSC-STATE {feature.state}"]
            for child_name in feature.sub_features:
                child = self.get(child_name)
                if child is not None:
                    lines.append(f"WINDSC-SUBFEATURE {child.name} {child.state}")
        return Receipt.success(channel="mock", host=self.name, output="\r\n".join(lines) + "\r\n")

    def _apply(self, script: str) -> Receipt:
        self.apply_count += 1
        if self.fail_applies:
            return Receipt.failure(
                channel="mock",
                host=self.name,
                error="PowerShell DSC resource MSFT_RoleResource failed to execute Set-TargetResource",
                exit_status=1,
            )

        block = _RESOURCE.search(script)
        name_match = _NAME.search(block.group(1)) if block else None
        ensure_match = _ENSURE.search(block.group(1)) if block else None
        if not name_match or not ensure_match:
            return Receipt.failure(
                channel="mock", host=self.name, error="Malformed resource", exit_status=1
            )
        include_all = _INCLUDE_ALL.search(block.group(1))
        resources = [
            (
                _unquote(name_match.group(1)),
                ensure_match.group(1) == "Present",
                bool(include_all and include_all.group(1) == "true"),
            )
        ]

        sub_list = _SUB_LIST.search(script)
        if sub_list:
            sub_ensure = _SUB_ENSURE.search(script)
            if not sub_ensure:
                return Receipt.failure(
                    channel="mock", host=self.name, error="Malformed sub-feature loop", exit_status=1
                )
            for sub_name in _QUOTED.findall(sub_list.group(1)):
                resources.append((_unquote(sub_name), sub_ensure.group(1) == "Present", False))

        for name, _present, _include_all in resources:
            if self.get(name) is None:
                return Receipt.failure(
                    channel="mock",
                    host=self.name,
                    error=f"ArgumentNotValid: The role, role service, or feature name is not valid: '{name}'",
                    exit_status=1,
                )

        if not self.ignore_applies:
            for name, present, include_all in resources:
                self._set(name, present, include_all)

        return Receipt.success(channel="mock", host=self.name, output="WINDSC-APPLY OK\r\n")

    def _set(self, name: str, present: bool, include_all: bool) -> None:
        feature = self.get(name)
        assert feature is not None
        feature.installed = present
        feature.install_state = None
        if include_all or not present:
            for child_name in feature.sub_features:
                self._set(child_name, present, include_all)


class MockChannel(RemoteChannel):
    """Channel bound to a MockWindowsHost."""

    def __init__(self, host: MockWindowsHost, hostname: str):
        self._host = host
        self._hostname = hostname
        self._closed = False
        self.commands: list[str] = []

    @property
    def name(self) -> str:
        return "mock"

    @property
    def host(self) -> str:
        return self._hostname

    @property
    def closed(self) -> bool:
        return self._closed

    def run(self, command: str) -> Receipt:
        if self._closed:
            return Receipt.failure(channel=self.name, host=self._hostname, error="Channel is closed")
        self.commands.append(command)
        return self._host.execute(command)

    def close(self) -> None:
        self._closed = True


class MockOpener:
    """ChannelOpener that connects to MockWindowsHost instances by hostname.

    Credentials are checked the same way the SSH opener checks them, so
    the fail-closed rule holds in tests too.
    """

    def __init__(self, hosts: dict[str, MockWindowsHost] | None = None):
        self.hosts: dict[str, MockWindowsHost] = dict(hosts or {})
        self.opened: list[MockChannel] = []

    def add_host(self, hostname: str) -> MockWindowsHost:
        host = MockWindowsHost(name=hostname)
        self.hosts[hostname] = host
        return host

    @property
    def open_count(self) -> int:
        return len(self.opened)

    @property
    def all_closed(self) -> bool:
        return all(ch.closed for ch in self.opened)

    def __call__(self, connection: Connection) -> MockChannel:
        if connection.auth_method == AuthMethod.NONE:
            raise RemoteConnectionError(
                "No authentication method configured (password or private key)",
                host=connection.host,
                phase="connecting",
            )
        host = self.hosts.get(connection.host)
        if host is None or host.refuse_connections:
            raise RemoteConnectionError(
                "Connection refused",
                host=connection.host,
                phase="connecting",
                cause=f"[Errno 111] Connection refused ({connection.address})",
            )
        channel = MockChannel(host, connection.host)
        self.opened.append(channel)
        return channel
