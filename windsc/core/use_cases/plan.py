"""
Plan use case — compile every declaration without connecting.

Shows which lifecycle verb ``apply`` would run for each declaration and
the exact DSC script it would send. Whether the host already matches
cannot be known offline, so ``update`` may still turn out to be a
no-op at apply time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from windsc.core.config.loader import ConfigError, config_root, find_config_file, load_config
from windsc.core.engine.compiler import ConfigurationPayload, compile_configuration
from windsc.core.engine.lifecycle import derive_identity
from windsc.core.errors import WindscError
from windsc.core.persistence.state_file import default_state_path, load_state


@dataclass
class PlannedFeature:
    """Planned change for one declaration."""

    address: str
    feature_name: str
    host: str = ""
    verb: str = ""  # create, update, replace, delete
    identity: str = ""
    bound_identity: str | None = None
    payload: ConfigurationPayload | None = None
    error: str | None = None

    def to_dict(self, include_script: bool = False) -> dict:
        payload = None
        if self.payload is not None:
            payload = self.payload.to_dict()
            if not include_script:
                payload.pop("script")
        return {
            "address": self.address,
            "feature_name": self.feature_name,
            "host": self.host,
            "verb": self.verb,
            "identity": self.identity,
            "bound_identity": self.bound_identity,
            "payload": payload,
            "error": self.error,
        }


@dataclass
class PlanResult:
    """Result of planning."""

    config_path: Path | None = None
    features: list[PlannedFeature] = field(default_factory=list)
    error: str | None = None

    @property
    def valid(self) -> bool:
        return not self.error and all(f.error is None for f in self.features)

    def to_dict(self, include_script: bool = False) -> dict:
        if self.error:
            return {"error": self.error}
        return {
            "config_path": str(self.config_path) if self.config_path else None,
            "valid": self.valid,
            "features": [f.to_dict(include_script) for f in self.features],
        }


def plan_features(
    config_path: Path | None = None,
    features: list[str] | None = None,
    state_path: Path | None = None,
) -> PlanResult:
    """Compile declarations and compare identities against stored bindings.

    Args:
        config_path: Optional explicit path to windsc.yml.
        features: Optional list of addresses to plan. None = all, plus
            deletion of orphaned bindings.
        state_path: Optional override for .state/current.json.
    """
    result = PlanResult()

    try:
        if config_path is None:
            config_path = find_config_file()
        if config_path is None:
            result.error = "No windsc.yml found. Create one, or specify --config."
            return result
        config = load_config(config_path)
    except ConfigError as e:
        result.error = str(e)
        return result

    result.config_path = config_path
    state = load_state(state_path or default_state_path(config_root(config_path)))

    selected = config.features
    if features:
        unknown = [a for a in features if config.get_feature(a) is None]
        if unknown:
            result.error = f"Unknown feature address(es): {', '.join(unknown)}"
            return result
        selected = [f for f in config.features if f.address in features]

    for decl in selected:
        host = config.connection.merged(decl.connection).host or ""
        planned = PlannedFeature(
            address=decl.address,
            feature_name=decl.name,
            host=host,
            identity=derive_identity(decl.name, host),
        )
        entry = state.resources.get(decl.address)
        if entry is None:
            planned.verb = "create"
        else:
            planned.bound_identity = entry.id
            planned.verb = "update" if entry.id == planned.identity else "replace"

        if not host:
            planned.error = "No connection host configured"
        else:
            try:
                planned.payload = compile_configuration(decl.to_desired())
            except (ValueError, WindscError) as e:
                planned.error = str(e)
        result.features.append(planned)

    if not features:
        declared = {d.address for d in config.features}
        for address, entry in state.resources.items():
            if address in declared:
                continue
            result.features.append(
                PlannedFeature(
                    address=address,
                    feature_name=entry.feature_name,
                    host=entry.host,
                    verb="delete",
                    identity=entry.id,
                    bound_identity=entry.id,
                )
            )

    return result
