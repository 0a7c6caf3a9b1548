"""Adapters — remote execution channels.

Public re-exports for convenient access. The SSH channel is imported
from ``windsc.adapters.ssh.channel`` directly so that paramiko is only
loaded when a real host is contacted.
"""

from windsc.adapters.base import ChannelOpener, RemoteChannel, channel_scope
from windsc.adapters.mock import MockChannel, MockOpener, MockWindowsHost

__all__ = [
    "ChannelOpener",
    "MockChannel",
    "MockOpener",
    "MockWindowsHost",
    "RemoteChannel",
    "channel_scope",
]
