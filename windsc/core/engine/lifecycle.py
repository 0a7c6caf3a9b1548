"""
Feature lifecycle — create, read, update and delete on top of the reconciler.

The external identity of a managed feature is ``<feature>@<host>``.
It is bound on a successful create or update and cleared on a
successful delete; a failed operation leaves the record untouched.

Known limitation: two operations on the same identity are not mutually
excluded here. Callers must serialize operations per identity.
"""

from __future__ import annotations

import logging
import threading

from windsc.core.engine.reconciler import (
    Diagnostic,
    ReconciliationResult,
    Reconciler,
)
from windsc.core.errors import IdentityConflictError, IdentityError
from windsc.core.models.feature import FeatureState, Presence
from windsc.core.models.resource import ResourceRecord

logger = logging.getLogger(__name__)

IDENTITY_SEPARATOR = "@"


def derive_identity(feature_name: str, host: str) -> str:
    """External identity for a feature on a host."""
    return f"{feature_name}{IDENTITY_SEPARATOR}{host}"


def parse_identity(identity: str) -> tuple[str, str]:
    """Split an identity into ``(feature_name, host)``.

    Feature names never contain ``@``, so the first separator wins.

    Raises:
        IdentityError: If the identity is not ``<feature>@<host>``.
    """
    feature_name, sep, host = identity.partition(IDENTITY_SEPARATOR)
    if not sep or not feature_name or not host:
        raise IdentityError(f"Malformed identity {identity!r}: expected '<feature>@<host>'")
    return feature_name, host


class FeatureLifecycle:
    """Map lifecycle verbs onto reconciliation operations.

    Each verb takes the caller's ResourceRecord, runs exactly the
    reconciliations it needs, and writes ``id`` and ``observed`` back
    only on success.
    """

    def __init__(self, reconciler: Reconciler | None = None):
        self._reconciler = reconciler or Reconciler()

    def create(
        self,
        record: ResourceRecord,
        cancel: threading.Event | None = None,
    ) -> ReconciliationResult:
        """Bring the declared feature into existence and bind its identity.

        Raises:
            IdentityConflictError: The record is already bound to a
                different feature or host.
            ReconcileError: Any reconciliation failure.
        """
        identity = derive_identity(record.desired.feature_name, record.connection.host)
        if record.bound and record.id != identity:
            raise IdentityConflictError(
                f"Record is bound to {record.id!r}, cannot create {identity!r}"
            )

        logger.info("create %s", identity)
        result = self._reconciler.reconcile(record.connection, record.desired, cancel=cancel)
        record.id = identity
        record.observed = result.final_state
        return result

    def read(
        self,
        record: ResourceRecord,
        cancel: threading.Event | None = None,
    ) -> ReconciliationResult:
        """Refresh ``record.observed`` from the host.

        The feature to read is taken from the bound identity. An unbound
        record reads as absent without touching the network.
        """
        if not record.bound:
            state = FeatureState.not_found(record.desired.feature_name)
            record.observed = state
            return ReconciliationResult(
                final_state=state,
                diagnostics=[Diagnostic("info", "Record is not bound; nothing to read")],
            )

        feature_name, host = parse_identity(record.id)
        if host != record.connection.host:
            raise IdentityConflictError(
                f"Identity {record.id!r} does not belong to host {record.connection.host!r}"
            )

        logger.info("read %s", record.id)
        result = self._reconciler.observe(record.connection, feature_name, cancel=cancel)
        record.observed = result.final_state

        expect_installed = record.desired.presence == Presence.PRESENT
        if result.final_state.installed != expect_installed:
            result.diagnostics.append(
                Diagnostic(
                    "warning",
                    f"Drift: expected {record.desired.presence}, "
                    f"host reports {result.final_state.install_state}",
                )
            )
        return result

    def update(
        self,
        prior: ResourceRecord,
        record: ResourceRecord,
        cancel: threading.Event | None = None,
    ) -> ReconciliationResult:
        """Move from ``prior`` to ``record``.

        A changed feature name or host changes the identity, so the old
        feature is deleted and the new one created. Otherwise the new
        desired state is reconciled in place, re-applying the complete
        configuration when the host is not already converged.
        """
        old_identity = prior.id or derive_identity(
            prior.desired.feature_name, prior.connection.host
        )
        new_identity = derive_identity(record.desired.feature_name, record.connection.host)

        if old_identity != new_identity:
            logger.info("replace %s → %s", old_identity, new_identity)
            deleted = self.delete(prior, cancel=cancel)
            record.id = None
            created = self.create(record, cancel=cancel)
            created.diagnostics[:0] = deleted.diagnostics + [
                Diagnostic("info", f"Replaced {old_identity} with {new_identity}")
            ]
            return created

        logger.info("update %s", new_identity)
        result = self._reconciler.reconcile(record.connection, record.desired, cancel=cancel)
        record.id = new_identity
        record.observed = result.final_state
        return result

    def delete(
        self,
        record: ResourceRecord,
        cancel: threading.Event | None = None,
    ) -> ReconciliationResult:
        """Ensure the feature is absent and clear the identity.

        A feature that is already absent, or unknown to the host, is a
        successful delete.
        """
        feature_name = record.desired.feature_name
        if record.bound:
            feature_name, host = parse_identity(record.id)
            if host != record.connection.host:
                raise IdentityConflictError(
                    f"Identity {record.id!r} does not belong to host {record.connection.host!r}"
                )

        desired = record.desired.with_presence(Presence.ABSENT)
        if feature_name != desired.feature_name:
            desired = desired.model_copy(update={"feature_name": feature_name})
        logger.info("delete %s", derive_identity(feature_name, record.connection.host))
        result = self._reconciler.reconcile(record.connection, desired, cancel=cancel)
        record.id = None
        record.observed = result.final_state
        return result
