"""
Tests for the feature lifecycle — create, read, update, delete and identity.
"""

import pytest

from windsc.core.engine.lifecycle import derive_identity, parse_identity
from windsc.core.errors import (
    ApplyError,
    FeatureNotFoundError,
    IdentityConflictError,
    IdentityError,
    RemoteConnectionError,
)
from windsc.core.models.feature import DesiredState, Presence
from windsc.core.models.resource import ResourceRecord


def _record(connection, name="Telnet-Client", **kw) -> ResourceRecord:
    return ResourceRecord(connection=connection, desired=DesiredState(feature_name=name, **kw))


class TestIdentity:
    def test_derive(self):
        assert derive_identity("Web-Server", "win01") == "Web-Server@win01"

    def test_parse(self):
        assert parse_identity("Web-Server@win01") == ("Web-Server", "win01")

    def test_parse_host_with_at(self):
        assert parse_identity("Web-Server@admin@win01") == ("Web-Server", "admin@win01")

    @pytest.mark.parametrize("identity", ["", "Web-Server", "@win01", "Web-Server@"])
    def test_parse_malformed(self, identity):
        with pytest.raises(IdentityError):
            parse_identity(identity)


class TestCreate:
    def test_binds_identity(self, lifecycle, connection, host):
        record = _record(connection)
        lifecycle.create(record)
        assert record.id == f"Telnet-Client@{connection.host}"
        assert record.observed.installed
        assert host.is_installed("Telnet-Client")

    def test_failure_leaves_record_unbound(self, lifecycle, connection, host):
        host.fail_applies = True
        record = _record(connection)
        with pytest.raises(ApplyError):
            lifecycle.create(record)
        assert record.id is None
        assert record.observed is None

    def test_unknown_feature(self, lifecycle, connection, host):
        record = _record(connection, name="UnknownFeatureXYZ")
        with pytest.raises(FeatureNotFoundError):
            lifecycle.create(record)
        assert record.id is None

    def test_conflicting_binding(self, lifecycle, connection, host):
        record = _record(connection)
        record.id = "Web-Server@elsewhere"
        with pytest.raises(IdentityConflictError):
            lifecycle.create(record)
        assert host.apply_count == 0

    def test_create_absent(self, lifecycle, connection, host):
        host.get("Telnet-Client").installed = True
        record = _record(connection, presence=Presence.ABSENT)
        lifecycle.create(record)
        assert record.id is not None
        assert not host.is_installed("Telnet-Client")


class TestRead:
    def test_unbound_reads_absent_without_network(self, lifecycle, connection, opener):
        record = _record(connection)
        result = lifecycle.read(record)
        assert not record.observed.installed
        assert not record.observed.known_to_host
        assert opener.open_count == 0
        assert result.diagnostics[0].severity == "info"

    def test_reads_from_identity(self, lifecycle, connection, host):
        record = _record(connection)
        lifecycle.create(record)
        # The identity decides what is read, not the declared name
        record.desired = DesiredState(feature_name="Web-Server")
        lifecycle.read(record)
        assert record.observed.feature_name == "Telnet-Client"
        assert record.observed.installed

    def test_drift_warning(self, lifecycle, connection, host):
        record = _record(connection)
        lifecycle.create(record)
        host.get("Telnet-Client").installed = False
        result = lifecycle.read(record)
        assert not record.observed.installed
        assert any("Drift" in w for w in result.warnings)
        assert host.apply_count == 1

    def test_feature_vanished(self, lifecycle, connection, host):
        record = _record(connection)
        lifecycle.create(record)
        del host.features["telnet-client"]
        lifecycle.read(record)
        assert not record.observed.known_to_host

    def test_host_mismatch(self, lifecycle, connection):
        record = _record(connection)
        record.id = "Telnet-Client@other-host"
        with pytest.raises(IdentityConflictError):
            lifecycle.read(record)

    def test_read_failure_keeps_observed(self, lifecycle, connection, host):
        record = _record(connection)
        lifecycle.create(record)
        observed = record.observed
        host.refuse_connections = True
        with pytest.raises(RemoteConnectionError):
            lifecycle.read(record)
        assert record.observed is observed


class TestUpdate:
    def test_in_place(self, lifecycle, connection, host):
        prior = _record(connection, name="Web-Server")
        lifecycle.create(prior)

        record = _record(connection, name="Web-Server", sub_features=("Web-Mgmt-Console",))
        record.id = prior.id
        result = lifecycle.update(prior, record)
        assert result.applied
        assert record.id == prior.id
        assert host.is_installed("Web-Mgmt-Console")

    def test_no_drift_is_noop(self, lifecycle, connection, host):
        prior = _record(connection)
        lifecycle.create(prior)
        record = _record(connection)
        record.id = prior.id
        result = lifecycle.update(prior, record)
        assert result.converged_without_change
        assert host.apply_count == 1

    def test_renamed_feature_is_delete_then_create(self, lifecycle, connection, host):
        prior = _record(connection, name="Telnet-Client")
        lifecycle.create(prior)
        old_id = prior.id

        record = _record(connection, name="Web-Server")
        record.id = old_id
        result = lifecycle.update(prior, record)

        assert not host.is_installed("Telnet-Client")
        assert host.is_installed("Web-Server")
        assert record.id == f"Web-Server@{connection.host}"
        assert prior.id is None
        assert any("Replaced" in d.message for d in result.diagnostics)

    def test_rename_delete_failure_keeps_old_binding(self, lifecycle, connection, host):
        prior = _record(connection, name="Telnet-Client")
        lifecycle.create(prior)
        old_id = prior.id

        host.fail_applies = True
        record = _record(connection, name="Web-Server")
        record.id = old_id
        with pytest.raises(ApplyError):
            lifecycle.update(prior, record)
        assert prior.id == old_id
        assert host.is_installed("Telnet-Client")
        assert not host.is_installed("Web-Server")

    def test_rename_create_failure_leaves_nothing_bound(self, lifecycle, connection, host):
        prior = _record(connection, name="Telnet-Client")
        lifecycle.create(prior)

        record = _record(connection, name="UnknownFeatureXYZ")
        record.id = prior.id
        with pytest.raises(FeatureNotFoundError):
            lifecycle.update(prior, record)
        assert prior.id is None
        assert record.id is None
        assert not host.is_installed("Telnet-Client")

    def test_host_change_is_replace(self, lifecycle, connection, host, opener):
        other = opener.add_host("win02.example.test")
        other.add_feature("Telnet-Client")

        prior = _record(connection)
        lifecycle.create(prior)

        moved = connection.model_copy(update={"host": "win02.example.test"})
        record = _record(moved)
        record.id = prior.id
        lifecycle.update(prior, record)

        assert not host.is_installed("Telnet-Client")
        assert other.is_installed("Telnet-Client")
        assert record.id == "Telnet-Client@win02.example.test"


class TestDelete:
    def test_removes_and_unbinds(self, lifecycle, connection, host):
        record = _record(connection)
        lifecycle.create(record)
        lifecycle.delete(record)
        assert record.id is None
        assert not host.is_installed("Telnet-Client")

    def test_already_absent(self, lifecycle, connection, host):
        record = _record(connection)
        record.id = derive_identity("Telnet-Client", connection.host)
        result = lifecycle.delete(record)
        assert result.converged_without_change
        assert record.id is None
        assert host.apply_count == 0

    def test_unknown_feature_is_deleted(self, lifecycle, connection, host):
        record = _record(connection, name="UnknownFeatureXYZ")
        record.id = derive_identity("UnknownFeatureXYZ", connection.host)
        result = lifecycle.delete(record)
        assert record.id is None
        assert not result.final_state.known_to_host

    def test_uses_identity_feature(self, lifecycle, connection, host):
        record = _record(connection)
        lifecycle.create(record)
        record.desired = DesiredState(feature_name="Web-Server")
        lifecycle.delete(record)
        assert not host.is_installed("Telnet-Client")

    def test_failure_keeps_identity(self, lifecycle, connection, host):
        record = _record(connection)
        lifecycle.create(record)
        host.fail_applies = True
        with pytest.raises(ApplyError):
            lifecycle.delete(record)
        assert record.id is not None

    def test_removes_listed_sub_features(self, lifecycle, connection, host):
        record = _record(connection, name="Web-Server", sub_features=("Web-Asp-Net45",))
        lifecycle.create(record)
        assert host.is_installed("Web-Asp-Net45")
        lifecycle.delete(record)
        assert not host.is_installed("Web-Server")
        assert not host.is_installed("Web-Asp-Net45")
