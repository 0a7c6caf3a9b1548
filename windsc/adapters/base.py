"""
Channel base — the contract between the engine and a remote host.

The engine only talks to hosts through this interface. A channel runs
opaque command strings and returns receipts; it performs no escaping,
no interpretation and no retries.

Channels are opened per operation and closed on every exit path. Use
``channel_scope`` rather than calling an opener directly.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from windsc.core.models.connection import Connection
from windsc.core.models.receipt import Receipt

logger = logging.getLogger(__name__)


class RemoteChannel(ABC):
    """Abstract base class for remote execution channels.

    ``run`` NEVER raises for a failed command. Non-zero exit status and
    transport errors during execution are captured in the Receipt.
    Failures to *open* a channel are raised by the opener instead, as
    RemoteConnectionError.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The channel identifier (e.g., 'ssh', 'mock')."""

    @property
    @abstractmethod
    def host(self) -> str:
        """The host this channel is connected to."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        """Whether close() has been called."""

    @abstractmethod
    def run(self, command: str) -> Receipt:
        """Run a command string and return a receipt. Never raises."""

    @abstractmethod
    def close(self) -> None:
        """Release the session. Safe to call more than once."""

    def __enter__(self) -> RemoteChannel:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r} host={self.host!r}>"


ChannelOpener = Callable[[Connection], RemoteChannel]


@contextmanager
def channel_scope(opener: ChannelOpener, connection: Connection) -> Iterator[RemoteChannel]:
    """Open a channel and guarantee it is closed when the block exits.

    The channel is closed on success, on exceptions, and on
    KeyboardInterrupt. A failure while closing is logged and never
    replaces the exception that ended the block.
    """
    channel = opener(connection)
    logger.debug("Opened %s channel to %s", channel.name, connection.address)
    try:
        yield channel
    finally:
        try:
            channel.close()
            logger.debug("Closed %s channel to %s", channel.name, connection.address)
        except Exception as e:
            logger.warning("Error closing channel to %s: %s", connection.address, e)
