"""
Configuration compiler — DesiredState in, DSC document out.

Pure and deterministic: the same DesiredState always yields the same
bytes, which is what lets the reconciler compare and replay payloads.

The generated script is a complete unit. It declares a DSC
``Configuration`` with one ``WindowsFeature`` resource for the feature
and, when sub-features are enumerated, one resource per sub-feature in
declaration order, expanded by a loop from one ``$subFeatures`` list. It
compiles the MOF into a temp directory, applies it with
``Start-DscConfiguration -Wait``, and always removes the MOF.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass

from windsc.core.engine.powershell import (
    MAX_COMMAND_LENGTH,
    encode_command,
    quote,
    validate_identifier,
)
from windsc.core.errors import PayloadTooLargeError
from windsc.core.models.feature import DesiredState, Presence

CONFIGURATION_NAME = "WindscFeature"
FEATURE_RESOURCE = "Feature"
SUBFEATURE_RESOURCE = "SubFeature"
APPLY_MARKER = "WINDSC-APPLY OK"


@dataclass(frozen=True)
class ConfigurationPayload:
    """A compiled, self-contained configuration for one feature."""

    feature_name: str
    presence: Presence
    include_all_sub_features: bool
    sub_features: tuple[str, ...]
    script: str

    @property
    def digest(self) -> str:
        """SHA-256 of the script, for diffing and audit."""
        return hashlib.sha256(self.script.encode("utf-8")).hexdigest()

    @property
    def command(self) -> str:
        """Command string that applies the script on the host."""
        return encode_command(self.script)

    def to_dict(self) -> dict:
        return {
            "feature_name": self.feature_name,
            "presence": self.presence.value,
            "include_all_sub_features": self.include_all_sub_features,
            "sub_features": list(self.sub_features),
            "digest": self.digest,
            "script": self.script,
        }


def _ps_bool(value: bool) -> str:
    return "$true" if value else "$false"


def _feature_block(desired: DesiredState, has_subs: bool) -> list[str]:
    lines = [
        f"        WindowsFeature {FEATURE_RESOURCE}",
        "        {",
        f"            Name                 = {quote(desired.feature_name)}",
        f"            Ensure               = {quote(desired.presence.value)}",
        f"            IncludeAllSubFeature = {_ps_bool(desired.include_all_sub_features)}",
    ]
    # Removing: children go first, the parent waits for them
    if desired.presence == Presence.ABSENT and has_subs:
        lines.append(
            "            DependsOn            = @(1..$subFeatures.Count | "
            f"ForEach-Object {{ \"[WindowsFeature]{SUBFEATURE_RESOURCE}$_\" }})"
        )
    lines.append("        }")
    return lines


def _sub_feature_loop(presence: Presence) -> list[str]:
    """One resource per entry of $subFeatures, named SubFeature1..N."""
    lines = [
        "        $n = 0",
        "        foreach ($sub in $subFeatures)",
        "        {",
        "            $n++",
        f"            WindowsFeature \"{SUBFEATURE_RESOURCE}$n\"",
        "            {",
        "                Name      = $sub",
        f"                Ensure    = {quote(presence.value)}",
    ]
    # Installing: the parent goes first
    if presence == Presence.PRESENT:
        lines.append(f"                DependsOn = '[WindowsFeature]{FEATURE_RESOURCE}'")
    lines.extend(["            }", "        }"])
    return lines


def _validate_identifiers(desired: DesiredState) -> None:
    validate_identifier(desired.feature_name)
    for name in desired.effective_sub_features:
        validate_identifier(name, kind="sub-feature name")


def validate_desired(desired: DesiredState) -> None:
    """Reject a DesiredState that cannot be compiled into a sendable command.

    Raises:
        InvalidIdentifierError: If the feature or an effective
            sub-feature name is not a safe identifier.
        PayloadTooLargeError: If the encoded command would exceed
            the remote command line limit.
    """
    compile_configuration(desired)


def compile_configuration(desired: DesiredState) -> ConfigurationPayload:
    """Compile a DesiredState into an applicable DSC payload.

    Sub-features are enumerated only when ``include_all_sub_features``
    is false and the list is non-empty. They are listed once, in
    ``$subFeatures``, and expanded into resources by a loop inside the
    configuration, so each one costs only its quoted name.

    Raises:
        InvalidIdentifierError: If the feature or a sub-feature name is
            not a safe identifier.
        PayloadTooLargeError: If the encoded command would exceed
            the remote command line limit.
    """
    _validate_identifiers(desired)
    sub_features = desired.effective_sub_features

    config_lines = [
        f"Configuration {CONFIGURATION_NAME}",
        "{",
        "    Import-DscResource -ModuleName PSDesiredStateConfiguration",
        "    Node 'localhost'",
        "    {",
        *_feature_block(desired, bool(sub_features)),
    ]
    if sub_features:
        config_lines.extend(_sub_feature_loop(desired.presence))
    config_lines.extend(["    }", "}"])

    preamble = ["$ErrorActionPreference = 'Stop'"]
    if sub_features:
        preamble.append(f"$subFeatures = @({','.join(quote(s) for s in sub_features)})")

    configuration = "\n".join(preamble + config_lines)
    work_dir = "windsc-" + hashlib.sha256(configuration.encode("utf-8")).hexdigest()[:16]

    script = "\n".join(
        [
            configuration,
            f"$outputPath = Join-Path $env:TEMP {quote(work_dir)}",
            "try",
            "{",
            f"    {CONFIGURATION_NAME} -OutputPath $outputPath | Out-Null",
            "    Start-DscConfiguration -Path $outputPath -Wait -Force -ErrorAction Stop",
            f"    Write-Output {quote(APPLY_MARKER)}",
            "}",
            "finally",
            "{",
            "    Remove-Item -Path $outputPath -Recurse -Force -ErrorAction SilentlyContinue",
            "}",
            "",
        ]
    )

    payload = ConfigurationPayload(
        feature_name=desired.feature_name,
        presence=desired.presence,
        include_all_sub_features=desired.include_all_sub_features,
        sub_features=sub_features,
        script=script,
    )
    length = len(payload.command)
    if length > MAX_COMMAND_LENGTH:
        raise PayloadTooLargeError(
            f"Configuration for '{desired.feature_name}' encodes to {length} characters, "
            f"over the {MAX_COMMAND_LENGTH}-character command line limit; "
            "split the sub-features across declarations or use include_all_sub_features"
        )
    return payload
