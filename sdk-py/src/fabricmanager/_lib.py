"""Process-wide library state: the init/shutdown gate around all clients.

Lifecycle rules:

* ``init()`` must happen before the first ``connect()``; calling it again
  while initialized raises ``FMError(IN_USE)``.
* ``shutdown()`` must happen after every client is disconnected; with open
  clients it raises ``FMError(IN_USE)`` and the library stays initialized.
* ``shutdown()`` when not initialized raises ``FMError(UNINITIALIZED)``.
* ``init()`` after a completed ``shutdown()`` starts a fresh lifetime.

All transitions are serialized by a single lock.
"""

from __future__ import annotations

import atexit
import logging
import threading
from typing import TYPE_CHECKING

from fabricmanager._status import FMError, ProtocolError, StatusCode

if TYPE_CHECKING:
    from fabricmanager._client import Client

logger = logging.getLogger("fabricmanager.lib")

_lock = threading.Lock()
_initialized = False
_clients: set[Client] = set()
_atexit_registered = False


def init() -> None:
    """Initialize the library. Must be called before ``connect()``."""
    global _initialized, _atexit_registered  # noqa: PLW0603

    with _lock:
        if _initialized:
            raise FMError(StatusCode.IN_USE, "Library already initialized")
        _initialized = True
        _clients.clear()
        if not _atexit_registered:
            atexit.register(_shutdown_at_exit)
            _atexit_registered = True
    logger.debug("Library initialized")


def shutdown() -> None:
    """Tear the library down once all clients are disconnected."""
    global _initialized  # noqa: PLW0603

    with _lock:
        if not _initialized:
            raise FMError(StatusCode.UNINITIALIZED)
        if _clients:
            raise FMError(
                StatusCode.IN_USE,
                f"{len(_clients)} client(s) still connected",
            )
        _initialized = False
    logger.debug("Library shut down")


def is_initialized() -> bool:
    with _lock:
        return _initialized


def _require_initialized() -> None:
    with _lock:
        if not _initialized:
            raise FMError(StatusCode.UNINITIALIZED)


def _register_client(client: Client) -> None:
    with _lock:
        if not _initialized:
            raise FMError(StatusCode.UNINITIALIZED)
        _clients.add(client)


def _unregister_client(client: Client) -> None:
    with _lock:
        _clients.discard(client)


def _shutdown_at_exit() -> None:
    """Disconnect leftover clients and tear down. Never raises."""
    global _initialized  # noqa: PLW0603

    with _lock:
        if not _initialized:
            return
        leftovers = list(_clients)

    for client in leftovers:
        logger.warning("Client for %s still connected at exit", client.address)
        try:
            client.disconnect()
        except (FMError, ProtocolError):
            logger.debug("Disconnect at exit failed", exc_info=True)

    with _lock:
        _clients.clear()
        _initialized = False
