"""
Reconciler — the core state machine.

One call reconciles one feature on one host:

    start → connecting → inspecting → {no_action_needed | converging}
          → verifying → {succeeded | failed}

The reconciler owns the channel for the duration of the call. It opens
a fresh one per operation and closes it on every exit path, including
cancellation. Nothing is retried; every failure aborts the operation
and is raised to the caller as a ReconcileError subclass carrying the
feature, host, phase and the phases visited so far.

An apply that reports success is not trusted on its own: the host is
inspected again and a mismatch is a VerificationError, distinct from
an ApplyError (the command itself failed).
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import StrEnum

from windsc.adapters.base import ChannelOpener, RemoteChannel, channel_scope
from windsc.core.engine.compiler import APPLY_MARKER, compile_configuration, validate_desired
from windsc.core.engine.inspector import inspect
from windsc.core.errors import (
    ApplyError,
    FeatureNotFoundError,
    InspectionError,
    OperationCancelled,
    ReconcileError,
    VerificationError,
)
from windsc.core.models.connection import Connection
from windsc.core.models.feature import DesiredState, FeatureState, Presence

logger = logging.getLogger(__name__)


class Phase(StrEnum):
    """States of one reconciliation operation."""

    START = "start"
    CONNECTING = "connecting"
    INSPECTING = "inspecting"
    NO_ACTION_NEEDED = "no_action_needed"
    CONVERGING = "converging"
    VERIFYING = "verifying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ConvergeAction(StrEnum):
    """What the decision step chose to do."""

    NONE = "none"
    INSTALL = "install"
    REMOVE = "remove"


@dataclass(frozen=True)
class Diagnostic:
    """A message attached to a result."""

    severity: str  # info, warning
    message: str

    def to_dict(self) -> dict:
        return {"severity": self.severity, "message": self.message}


@dataclass
class ReconciliationResult:
    """Outcome of a successful reconciliation."""

    final_state: FeatureState
    diagnostics: list[Diagnostic] = field(default_factory=list)
    phases: list[Phase] = field(default_factory=list)
    action: ConvergeAction = ConvergeAction.NONE
    applied: bool = False
    payload_digest: str | None = None

    @property
    def converged_without_change(self) -> bool:
        return Phase.NO_ACTION_NEEDED in self.phases

    @property
    def warnings(self) -> list[str]:
        return [d.message for d in self.diagnostics if d.severity == "warning"]

    def to_dict(self) -> dict:
        return {
            "feature_name": self.final_state.feature_name,
            "installed": self.final_state.installed,
            "install_state": self.final_state.install_state.value,
            "sub_features": list(self.final_state.sub_features),
            "action": self.action.value,
            "applied": self.applied,
            "payload_digest": self.payload_digest,
            "phases": [p.value for p in self.phases],
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }


def sub_features_satisfied(desired: DesiredState, observed: FeatureState) -> bool:
    """Whether the observed children meet the desired sub-feature policy."""
    if desired.include_all_sub_features:
        return not observed.uninstalled_sub_features
    return observed.has_sub_features(desired.sub_features)


def decide_action(desired: DesiredState, observed: FeatureState) -> ConvergeAction:
    """Compare desired and observed state and pick an action."""
    if desired.presence == Presence.PRESENT:
        if observed.installed and sub_features_satisfied(desired, observed):
            return ConvergeAction.NONE
        return ConvergeAction.INSTALL
    if not observed.installed:
        return ConvergeAction.NONE
    return ConvergeAction.REMOVE


@dataclass
class _Trace:
    """Phase bookkeeping for one operation."""

    feature_name: str
    host: str
    cancel: threading.Event | None = None
    phases: list[Phase] = field(default_factory=lambda: [Phase.START])
    diagnostics: list[Diagnostic] = field(default_factory=list)

    def enter(self, phase: Phase) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise OperationCancelled(
                "Operation cancelled",
                feature_name=self.feature_name,
                host=self.host,
                phase=phase.value,
            )
        logger.debug("%s@%s → %s", self.feature_name, self.host, phase)
        self.phases.append(phase)

    def note(self, message: str, severity: str = "info") -> None:
        self.diagnostics.append(Diagnostic(severity=severity, message=message))
        log = logger.warning if severity == "warning" else logger.info
        log("%s@%s: %s", self.feature_name, self.host, message)

    def fail(self, error: ReconcileError) -> None:
        if not error.phase:
            error.phase = self.phases[-1].value
        if not error.feature_name:
            error.feature_name = self.feature_name
        if not error.host:
            error.host = self.host
        self.phases.append(Phase.FAILED)
        error.phases = tuple(p.value for p in self.phases)
        logger.error("%s@%s failed in %s: %s", self.feature_name, self.host, error.phase, error)

    def note_restart(self, state: FeatureState) -> None:
        if state.install_state.restart_pending:
            self.note(
                f"Feature '{state.feature_name}' is {state.install_state}: a restart is pending",
                severity="warning",
            )


class Reconciler:
    """Drive one feature on one host toward its desired state.

    Args:
        opener: Opens a channel for a Connection. Defaults to SSH.
    """

    def __init__(self, opener: ChannelOpener | None = None):
        if opener is None:
            from windsc.adapters.ssh.channel import open_ssh_channel

            opener = open_ssh_channel
        self._opener = opener

    def reconcile(
        self,
        connection: Connection,
        desired: DesiredState,
        cancel: threading.Event | None = None,
    ) -> ReconciliationResult:
        """Converge the feature toward ``desired`` and verify the result.

        Raises:
            InvalidIdentifierError: Before connecting, for unsafe names.
            PayloadTooLargeError: Before connecting, for oversized payloads.
            RemoteConnectionError: The channel could not be opened.
            FeatureNotFoundError: The feature is unknown and desired Present.
            InspectionError: The host's answer could not be classified.
            ApplyError: The configuration command failed.
            VerificationError: The host does not match after applying.
            OperationCancelled: ``cancel`` was set between phases.
        """
        validate_desired(desired)
        trace = _Trace(desired.feature_name, connection.host, cancel)

        if desired.include_all_sub_features and desired.sub_features:
            trace.note("sub_features ignored because include_all_sub_features is set")

        try:
            trace.enter(Phase.CONNECTING)
            with channel_scope(self._opener, connection) as channel:
                return self._run(channel, desired, trace)
        except ReconcileError as e:
            trace.fail(e)
            raise

    def observe(
        self,
        connection: Connection,
        feature_name: str,
        missing_ok: bool = True,
        cancel: threading.Event | None = None,
    ) -> ReconciliationResult:
        """Read the current state of a feature without changing it.

        With ``missing_ok`` a feature unknown to the host reads as a
        NotFound state instead of raising FeatureNotFoundError.
        """
        trace = _Trace(feature_name, connection.host, cancel)
        try:
            trace.enter(Phase.CONNECTING)
            with channel_scope(self._opener, connection) as channel:
                trace.enter(Phase.INSPECTING)
                try:
                    state = inspect(channel, feature_name)
                except FeatureNotFoundError:
                    if not missing_ok:
                        raise
                    state = FeatureState.not_found(feature_name)
                    trace.note(
                        f"Feature '{feature_name}' is not known to the host", severity="warning"
                    )
                trace.note_restart(state)
                trace.enter(Phase.SUCCEEDED)
                return ReconciliationResult(
                    final_state=state,
                    diagnostics=trace.diagnostics,
                    phases=trace.phases,
                )
        except ReconcileError as e:
            trace.fail(e)
            raise

    # ── Phases ──────────────────────────────────────────────────

    def _run(
        self,
        channel: RemoteChannel,
        desired: DesiredState,
        trace: _Trace,
    ) -> ReconciliationResult:
        trace.enter(Phase.INSPECTING)
        try:
            observed = inspect(channel, desired.feature_name)
        except FeatureNotFoundError:
            if desired.presence == Presence.PRESENT:
                raise
            trace.note(
                f"Feature '{desired.feature_name}' is not known to the host; already absent",
                severity="warning",
            )
            observed = FeatureState.not_found(desired.feature_name)

        unknown = _foreign_sub_features(desired, observed)
        if unknown:
            raise InspectionError(
                f"Sub-feature(s) {', '.join(unknown)} are not children of "
                f"'{desired.feature_name}'",
                feature_name=desired.feature_name,
                host=channel.host,
                phase=Phase.INSPECTING.value,
                cause="children: "
                + (", ".join(observed.sub_features + observed.uninstalled_sub_features) or "none"),
            )

        action = decide_action(desired, observed)

        if action == ConvergeAction.NONE:
            trace.enter(Phase.NO_ACTION_NEEDED)
            logger.info(
                "%s@%s already %s, nothing to do",
                desired.feature_name,
                channel.host,
                desired.presence,
            )
            trace.enter(Phase.VERIFYING)
            trace.note_restart(observed)
            trace.enter(Phase.SUCCEEDED)
            return ReconciliationResult(
                final_state=observed,
                diagnostics=trace.diagnostics,
                phases=trace.phases,
                action=action,
            )

        trace.enter(Phase.CONVERGING)
        payload = compile_configuration(desired)
        logger.info(
            "%s@%s: %s (payload %s)",
            desired.feature_name,
            channel.host,
            action,
            payload.digest[:12],
        )
        receipt = channel.run(payload.command)
        if receipt.failed:
            raise ApplyError(
                "Configuration apply failed",
                feature_name=desired.feature_name,
                host=channel.host,
                phase=Phase.CONVERGING.value,
                cause=receipt.error,
            )
        if APPLY_MARKER not in receipt.output:
            trace.note("Apply completed without a confirmation marker", severity="warning")

        trace.enter(Phase.VERIFYING)
        final_state = self._verify(channel, desired)
        trace.note_restart(final_state)
        trace.enter(Phase.SUCCEEDED)
        return ReconciliationResult(
            final_state=final_state,
            diagnostics=trace.diagnostics,
            phases=trace.phases,
            action=action,
            applied=True,
            payload_digest=payload.digest,
        )

    def _verify(self, channel: RemoteChannel, desired: DesiredState) -> FeatureState:
        try:
            observed = inspect(channel, desired.feature_name)
        except FeatureNotFoundError as e:
            if desired.presence == Presence.ABSENT:
                return FeatureState.not_found(desired.feature_name)
            raise VerificationError(
                "Feature disappeared after apply",
                feature_name=desired.feature_name,
                host=channel.host,
                phase=Phase.VERIFYING.value,
                cause=e,
            ) from e

        if decide_action(desired, observed) != ConvergeAction.NONE:
            detail = f"expected {desired.presence}, host reports {observed.install_state}"
            if observed.installed and desired.presence == Presence.PRESENT:
                detail = "sub-features not installed: " + ", ".join(
                    _missing_sub_features(desired, observed)
                )
            raise VerificationError(
                "Host state does not match desired state after apply",
                feature_name=desired.feature_name,
                host=channel.host,
                phase=Phase.VERIFYING.value,
                cause=detail,
            )
        return observed


def _missing_sub_features(desired: DesiredState, observed: FeatureState) -> list[str]:
    if desired.include_all_sub_features:
        return list(observed.uninstalled_sub_features)
    installed = {n.lower() for n in observed.sub_features}
    return [n for n in desired.sub_features if n.lower() not in installed]


def _foreign_sub_features(desired: DesiredState, observed: FeatureState) -> list[str]:
    """Listed sub-features the host does not report as children of the feature."""
    if desired.presence != Presence.PRESENT or desired.include_all_sub_features:
        return []
    if not observed.known_to_host:
        return []
    children = {n.lower() for n in observed.sub_features + observed.uninstalled_sub_features}
    return [n for n in desired.sub_features if n.lower() not in children]
