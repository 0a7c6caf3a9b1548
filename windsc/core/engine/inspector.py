"""
State inspector — ask the host what a feature looks like right now.

The query script prints marker lines that the parser classifies:

    WINDSC-FEATURE Web-Server
    WINDSC-STATE Installed
    WINDSC-SUBFEATURE Web-Asp-Net45 Available

Anything without the ``WINDSC-`` prefix (profile banners, blank lines,
progress noise) is ignored. The markers themselves are read strictly:
a missing or conflicting state is an InspectionError, never a guess.
"""

from __future__ import annotations

import logging
import textwrap

from windsc.adapters.base import RemoteChannel
from windsc.core.engine.powershell import encode_command, quote, validate_identifier
from windsc.core.errors import FeatureNotFoundError, InspectionError
from windsc.core.models.feature import FeatureState, InstallState

logger = logging.getLogger(__name__)

MARKER_PREFIX = "WINDSC-"
FEATURE_MARKER = "WINDSC-FEATURE"
STATE_MARKER = "WINDSC-STATE"
SUBFEATURE_MARKER = "WINDSC-SUBFEATURE"

_STATES = {state.value.lower(): state for state in InstallState}

_QUERY_TEMPLATE = textwrap.dedent("""\
    $ErrorActionPreference = 'Stop'
    $name = {name}
    $feature = Get-WindowsFeature -Name $name -ErrorAction SilentlyContinue
    if ($null -eq $feature) {{
        Write-Output ('WINDSC-FEATURE ' + $name)
        Write-Output 'WINDSC-STATE NotFound'
        exit 0
    }}
    Write-Output ('WINDSC-FEATURE ' + $feature.Name)
    Write-Output ('WINDSC-STATE ' + $feature.InstallState)
    foreach ($sub in $feature.SubFeatures) {{
        $child = Get-WindowsFeature -Name $sub -ErrorAction SilentlyContinue
        if ($null -ne $child) {{
            Write-Output ('WINDSC-SUBFEATURE ' + $child.Name + ' ' + $child.InstallState)
        }}
    }}
""")


def build_query_script(feature_name: str) -> str:
    """Read-only PowerShell script that reports a feature's state."""
    validate_identifier(feature_name)
    return _QUERY_TEMPLATE.format(name=quote(feature_name))


def build_query_command(feature_name: str) -> str:
    """Command string that runs the query script on the host."""
    return encode_command(build_query_script(feature_name))


def _parse_state(token: str, feature_name: str, host: str) -> InstallState:
    state = _STATES.get(token.lower())
    if state is None:
        raise InspectionError(
            f"Unrecognized install state {token!r}",
            feature_name=feature_name,
            host=host,
            phase="inspecting",
        )
    return state


def parse_feature_state(feature_name: str, output: str, host: str = "") -> FeatureState:
    """Classify query output into a FeatureState.

    Raises:
        FeatureNotFoundError: The host reports the feature does not exist.
        InspectionError: The output is missing a state, reports more than
            one, names a different feature, or uses an unknown token.
    """
    states: list[InstallState] = []
    echoed: list[str] = []
    installed_subs: list[str] = []
    uninstalled_subs: list[str] = []

    for raw_line in output.splitlines():
        parts = raw_line.split()
        if not parts or not parts[0].upper().startswith(MARKER_PREFIX):
            continue

        marker = parts[0].upper()
        args = parts[1:]

        if marker == FEATURE_MARKER and len(args) == 1:
            echoed.append(args[0])
        elif marker == STATE_MARKER and len(args) == 1:
            states.append(_parse_state(args[0], feature_name, host))
        elif marker == SUBFEATURE_MARKER and len(args) == 2:
            sub_state = _parse_state(args[1], feature_name, host)
            if sub_state.installed:
                installed_subs.append(args[0])
            else:
                uninstalled_subs.append(args[0])
        else:
            raise InspectionError(
                f"Malformed marker line {raw_line.strip()!r}",
                feature_name=feature_name,
                host=host,
                phase="inspecting",
            )

    if not states:
        raise InspectionError(
            "Query output contains no install state",
            feature_name=feature_name,
            host=host,
            phase="inspecting",
            cause=output.strip()[:500] or None,
        )
    if len(set(states)) > 1:
        raise InspectionError(
            f"Query output reports conflicting states: {', '.join(s.value for s in states)}",
            feature_name=feature_name,
            host=host,
            phase="inspecting",
        )
    for name in echoed:
        if name.lower() != feature_name.lower():
            raise InspectionError(
                f"Query output describes {name!r}, not the requested feature",
                feature_name=feature_name,
                host=host,
                phase="inspecting",
            )

    state = states[0]
    if state == InstallState.NOT_FOUND:
        raise FeatureNotFoundError(
            f"Feature '{feature_name}' does not exist on the host",
            feature_name=feature_name,
            host=host,
            phase="inspecting",
        )

    return FeatureState(
        feature_name=feature_name,
        install_state=state,
        sub_features=tuple(installed_subs),
        uninstalled_sub_features=tuple(uninstalled_subs),
    )


def inspect(channel: RemoteChannel, feature_name: str) -> FeatureState:
    """Query the host behind ``channel`` for the state of a feature.

    Raises:
        FeatureNotFoundError: The feature is unknown to the host.
        InspectionError: The query failed or its output was ambiguous.
    """
    receipt = channel.run(build_query_command(feature_name))
    if receipt.failed:
        raise InspectionError(
            "State query failed",
            feature_name=feature_name,
            host=channel.host,
            phase="inspecting",
            cause=receipt.error,
        )

    state = parse_feature_state(feature_name, receipt.output, host=channel.host)
    logger.debug(
        "Inspected %s on %s: %s (%d sub-features installed)",
        feature_name,
        channel.host,
        state.install_state,
        len(state.sub_features),
    )
    return state
