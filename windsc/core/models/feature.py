"""
Feature models — what the operator wants and what the host reports.

DesiredState is declared by the caller. FeatureState is produced by
the inspector only. Both are frozen: the reconciler combines them to
decide an action but never mutates either.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Presence(StrEnum):
    """Target presence of a feature (DSC ``Ensure``)."""

    PRESENT = "Present"
    ABSENT = "Absent"


class InstallState(StrEnum):
    """Install state as reported by ``Get-WindowsFeature``."""

    INSTALLED = "Installed"
    AVAILABLE = "Available"
    REMOVED = "Removed"
    INSTALL_PENDING = "InstallPending"
    UNINSTALL_PENDING = "UninstallPending"
    NOT_FOUND = "NotFound"

    @property
    def installed(self) -> bool:
        return self in (InstallState.INSTALLED, InstallState.INSTALL_PENDING)

    @property
    def restart_pending(self) -> bool:
        return self in (InstallState.INSTALL_PENDING, InstallState.UNINSTALL_PENDING)


class DesiredState(BaseModel):
    """Declared target state for one feature.

    ``sub_features`` is an ordered set: order is kept, duplicates are
    rejected. It is ignored when ``include_all_sub_features`` is set.
    """

    model_config = ConfigDict(frozen=True)

    feature_name: str
    presence: Presence = Presence.PRESENT
    include_all_sub_features: bool = False
    sub_features: tuple[str, ...] = ()

    @field_validator("feature_name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("feature_name must not be empty")
        return value

    @field_validator("sub_features")
    @classmethod
    def _unique_sub_features(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        cleaned = tuple(v.strip() for v in value)
        seen: set[str] = set()
        dupes = []
        for name in cleaned:
            key = name.lower()
            if key in seen:
                dupes.append(name)
            seen.add(key)
        if dupes:
            raise ValueError(f"duplicate sub_features: {', '.join(dupes)}")
        return cleaned

    @property
    def effective_sub_features(self) -> tuple[str, ...]:
        """Sub-features that take part in compilation and comparison."""
        if self.include_all_sub_features:
            return ()
        return self.sub_features

    def with_presence(self, presence: Presence) -> DesiredState:
        """Copy of this state with a different presence."""
        return self.model_copy(update={"presence": presence})


class FeatureState(BaseModel):
    """Observed state of a feature on a host.

    ``sub_features`` lists the installed child features,
    ``uninstalled_sub_features`` the children that are not installed.
    """

    model_config = ConfigDict(frozen=True)

    feature_name: str
    install_state: InstallState
    sub_features: tuple[str, ...] = ()
    uninstalled_sub_features: tuple[str, ...] = Field(default=())

    @property
    def installed(self) -> bool:
        return self.install_state.installed

    @property
    def known_to_host(self) -> bool:
        return self.install_state != InstallState.NOT_FOUND

    def has_sub_features(self, names: tuple[str, ...]) -> bool:
        """Whether every name in ``names`` is an installed child."""
        installed = {n.lower() for n in self.sub_features}
        return all(n.lower() in installed for n in names)

    @classmethod
    def not_found(cls, feature_name: str) -> FeatureState:
        """Synthetic state for a feature the host does not know."""
        return cls(feature_name=feature_name, install_state=InstallState.NOT_FOUND)
