"""gRPC transport that carries raw codec frames to the fabric manager daemon."""

from __future__ import annotations

import logging
import os

import grpc

from fabricmanager._codec import FM_CMD_PORT_NUMBER
from fabricmanager._status import FMError, StatusCode

logger = logging.getLogger("fabricmanager.transport")

SERVICE_NAME = "nvfm.FabricManager"
HANDLE_METADATA_KEY = "fm-handle"

_SOCKET_SUFFIXES = (".sock", ".socket")

_RPC_STATUS_MAP: dict[grpc.StatusCode, StatusCode] = {
    grpc.StatusCode.DEADLINE_EXCEEDED: StatusCode.TIMEOUT,
    grpc.StatusCode.UNAVAILABLE: StatusCode.CONNECTION_NOT_VALID,
    grpc.StatusCode.CANCELLED: StatusCode.CONNECTION_NOT_VALID,
    grpc.StatusCode.UNIMPLEMENTED: StatusCode.NOT_SUPPORTED,
    grpc.StatusCode.INVALID_ARGUMENT: StatusCode.BADPARAM,
}


def _with_default_port(address: str) -> str:
    if address.startswith("["):
        _, _, rest = address.partition("]")
        if rest.startswith(":"):
            return address
        return f"{address}:{FM_CMD_PORT_NUMBER}"
    colons = address.count(":")
    if colons == 1:
        return address
    if colons > 1:
        # bare IPv6 literal
        return f"[{address}]:{FM_CMD_PORT_NUMBER}"
    return f"{address}:{FM_CMD_PORT_NUMBER}"


def is_unix_socket_address(address: str) -> bool:
    """Paths and socket file names select local socket addressing."""
    return (
        address.startswith("unix:")
        or "/" in address
        or os.sep in address
        or address.endswith(_SOCKET_SUFFIXES)
    )


def resolve_address(address: str) -> tuple[str, bool]:
    """Normalize a daemon address.

    Returns ``(address, is_unix_socket)``: a socket path without any
    ``unix:`` prefix, or ``host:port`` with the well-known port filled in.
    """
    address = address.strip()
    if not address:
        raise FMError(StatusCode.BADPARAM, "Empty daemon address")
    if is_unix_socket_address(address):
        if address.startswith("unix:"):
            address = address[len("unix:"):]
        return address, True
    return _with_default_port(address), False


def grpc_target(address: str, is_unix_socket: bool) -> str:
    return f"unix:{address}" if is_unix_socket else address


def _map_rpc_error(exc: grpc.RpcError) -> StatusCode:
    code = exc.code() if isinstance(exc, grpc.Call) else None
    if code is None:
        return StatusCode.GENERIC_ERROR
    return _RPC_STATUS_MAP.get(code, StatusCode.GENERIC_ERROR)


class Transport:
    """One gRPC channel to the daemon.

    Each daemon operation is a unary method on ``nvfm.FabricManager`` whose
    request and response are raw codec bytes. The configured timeout bounds
    the readiness wait and every call unless a shorter one is passed in.
    """

    def __init__(self, target: str, *, timeout_ms: int) -> None:
        self._target = target
        self._timeout_s = timeout_ms / 1000.0
        self._channel: grpc.Channel | None = grpc.insecure_channel(target)
        self._methods: dict[str, grpc.UnaryUnaryMultiCallable] = {}

    @property
    def target(self) -> str:
        return self._target

    @property
    def is_open(self) -> bool:
        return self._channel is not None

    def wait_ready(self, timeout_s: float | None = None) -> None:
        """Block until the channel is connected or the timeout elapses."""
        if self._channel is None:
            raise FMError(StatusCode.CONNECTION_NOT_VALID)
        if timeout_s is None:
            timeout_s = self._timeout_s
        ready = grpc.channel_ready_future(self._channel)
        try:
            ready.result(timeout=timeout_s)
        except grpc.FutureTimeoutError:
            ready.cancel()
            logger.debug("Channel to %s not ready after %.3fs", self._target, timeout_s)
            raise FMError(StatusCode.TIMEOUT) from None

    def call(
        self,
        method: str,
        payload: bytes,
        *,
        handle: int | None = None,
        timeout_s: float | None = None,
    ) -> bytes:
        """Send one request frame and return the response frame."""
        if self._channel is None:
            raise FMError(StatusCode.CONNECTION_NOT_VALID)
        stub = self._methods.get(method)
        if stub is None:
            stub = self._channel.unary_unary(f"/{SERVICE_NAME}/{method}")
            self._methods[method] = stub

        metadata = None
        if handle is not None:
            metadata = [(HANDLE_METADATA_KEY, str(handle))]
        try:
            response: bytes = stub(
                payload,
                timeout=self._timeout_s if timeout_s is None else timeout_s,
                metadata=metadata,
            )
        except grpc.RpcError as exc:
            status = _map_rpc_error(exc)
            logger.debug("%s on %s failed: %s", method, self._target, status.name, exc_info=True)
            raise FMError(status) from exc
        return response

    def close(self) -> None:
        """Close the channel. Safe to call more than once."""
        channel, self._channel = self._channel, None
        self._methods.clear()
        if channel is not None:
            channel.close()
