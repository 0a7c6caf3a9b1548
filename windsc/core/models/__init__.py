"""
Domain models — Pydantic types for windsc.

All models are re-exported here for convenient access:

    from windsc.core.models import Connection, DesiredState, FeatureState, Receipt
"""

from windsc.core.models.connection import AuthMethod, Connection, HostKeyPolicy
from windsc.core.models.feature import DesiredState, FeatureState, InstallState, Presence
from windsc.core.models.receipt import Receipt
from windsc.core.models.resource import ResourceRecord
from windsc.core.models.state import BoundFeature, OperationRecord, ProviderState

__all__ = [
    # connection.py
    "AuthMethod",
    # state.py
    "BoundFeature",
    "Connection",
    # feature.py
    "DesiredState",
    "FeatureState",
    "HostKeyPolicy",
    "InstallState",
    "OperationRecord",
    "Presence",
    "ProviderState",
    # receipt.py
    "Receipt",
    # resource.py
    "ResourceRecord",
]
