"""Client session with a fabric manager daemon and the partition operations."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterable
from types import TracebackType

from fabricmanager import _lib
from fabricmanager._codec import (
    FABRIC_PARTITION_LIST_VERSION,
    FM_MAX_STR_LENGTH,
    NVLINK_FAILED_DEVICES_VERSION,
    UNSUPPORTED_PARTITION_LIST_VERSION,
    decode_connect_result,
    decode_failed_devices,
    decode_frame,
    decode_partition_list,
    decode_unsupported_list,
    encode_activated_list,
    encode_connect_params,
    encode_partition_id,
    encode_version_request,
)
from fabricmanager._config import ConnectionConfig
from fabricmanager._status import FMError, StatusCode, check_status
from fabricmanager._transport import Transport, grpc_target, resolve_address
from fabricmanager._types import NvlinkFailedDevices, Partition, UnsupportedPartition

logger = logging.getLogger("fabricmanager.client")

DEFAULT_TIMEOUT_MS = 5000

_UINT32_MAX = 0xFFFFFFFF


def _check_partition_id(partition_id: int) -> int:
    if isinstance(partition_id, bool) or not isinstance(partition_id, int):
        raise FMError(StatusCode.BADPARAM, f"Invalid partition ID: {partition_id!r}")
    if not 0 <= partition_id <= _UINT32_MAX:
        raise FMError(StatusCode.BADPARAM, f"Partition ID out of range: {partition_id}")
    return partition_id


class Client:
    """An open session with one fabric manager daemon.

    Created by :func:`connect` and owned by the caller, who must release it
    with exactly one :meth:`disconnect` (or by leaving a ``with`` block).
    Calling ``disconnect`` twice, or any operation afterwards, raises
    ``FMError(CONNECTION_NOT_VALID)``.

    Calls on one client are serialized by an internal lock, so a client may
    be shared between threads; requests from different threads simply queue.
    """

    def __init__(self, transport: Transport, handle: int, address: str) -> None:
        self._transport = transport
        self._handle = handle
        self._address = address
        self._lock = threading.Lock()
        self._connected = True

    @property
    def address(self) -> str:
        return self._address

    @property
    def is_connected(self) -> bool:
        return self._connected

    def __enter__(self) -> Client:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._connected:
            self.disconnect()

    def __repr__(self) -> str:
        state = "connected" if self._connected else "disconnected"
        return f"<Client {self._address} {state}>"

    def disconnect(self) -> None:
        """Release the daemon handle. The local channel is closed even on error."""
        with self._lock:
            if not self._connected:
                raise FMError(StatusCode.CONNECTION_NOT_VALID, "Client already disconnected")
            self._connected = False
            try:
                frame = self._transport.call("Disconnect", b"", handle=self._handle)
                status, _ = decode_frame(frame)
            finally:
                self._transport.close()
                _lib._unregister_client(self)
        logger.debug("Disconnected from %s", self._address)
        check_status(status)

    def _call(self, method: str, payload: bytes) -> bytes:
        with self._lock:
            if not self._connected:
                raise FMError(StatusCode.CONNECTION_NOT_VALID, "Client is disconnected")
            _lib._require_initialized()
            frame = self._transport.call(method, payload, handle=self._handle)
        status, body = decode_frame(frame)
        if status != StatusCode.SUCCESS:
            logger.debug("%s returned status %d", method, status)
        check_status(status)
        return body

    def get_supported_partitions(self) -> list[Partition]:
        """All partitions known to the daemon, active or not, in daemon order."""
        body = self._call(
            "GetSupportedFabricPartitions",
            encode_version_request(FABRIC_PARTITION_LIST_VERSION),
        )
        return decode_partition_list(body)

    def activate_partition(self, partition_id: int) -> None:
        """Activate a partition. Activating an active partition is an error."""
        self._call("ActivateFabricPartition", encode_partition_id(_check_partition_id(partition_id)))

    def deactivate_partition(self, partition_id: int) -> None:
        """Deactivate a partition. Deactivating an inactive partition is an error."""
        self._call("DeactivateFabricPartition", encode_partition_id(_check_partition_id(partition_id)))

    def get_unsupported_partitions(self) -> list[UnsupportedPartition]:
        body = self._call(
            "GetUnsupportedFabricPartitions",
            encode_version_request(UNSUPPORTED_PARTITION_LIST_VERSION),
        )
        return decode_unsupported_list(body)

    def set_activated_partitions(self, partition_ids: Iterable[int]) -> None:
        """Replace the set of activated partitions with exactly ``partition_ids``.

        An empty list deactivates everything. IDs are sent as given, duplicates
        included; more than ``FM_MAX_FABRIC_PARTITIONS`` raises ProtocolError.
        """
        ids = [_check_partition_id(pid) for pid in partition_ids]
        self._call("SetActivatedFabricPartitions", encode_activated_list(ids))

    def get_nvlink_failed_devices(self) -> NvlinkFailedDevices:
        """Current NVLink failure snapshot. An empty report means healthy."""
        body = self._call(
            "GetNvlinkFailedDevices",
            encode_version_request(NVLINK_FAILED_DEVICES_VERSION),
        )
        return decode_failed_devices(body)


def connect(address: str, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> Client:
    """Open a session with the daemon at ``address``.

    ``address`` is either a local socket path or ``host[:port]`` (port 6666
    when omitted). ``timeout_ms`` bounds the whole handshake. Failures raise
    FMError and leave nothing open.
    """
    if isinstance(timeout_ms, bool) or not isinstance(timeout_ms, int):
        raise FMError(StatusCode.BADPARAM, f"Invalid timeout: {timeout_ms!r}")
    if not 0 < timeout_ms <= _UINT32_MAX:
        raise FMError(StatusCode.BADPARAM, f"Timeout out of range: {timeout_ms}")
    _lib._require_initialized()
    resolved, is_unix_socket = resolve_address(address)
    if len(resolved.encode("utf-8")) >= FM_MAX_STR_LENGTH:
        raise FMError(
            StatusCode.BADPARAM,
            f"Address longer than {FM_MAX_STR_LENGTH - 1} bytes: {resolved[:32]}...",
        )

    transport = Transport(grpc_target(resolved, is_unix_socket), timeout_ms=timeout_ms)
    try:
        deadline = time.monotonic() + timeout_ms / 1000.0
        transport.wait_ready()
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise FMError(StatusCode.TIMEOUT)
        frame = transport.call(
            "Connect",
            encode_connect_params(resolved, timeout_ms, is_unix_socket),
            timeout_s=remaining,
        )
        status, body = decode_frame(frame)
        check_status(status)
        client = Client(transport, decode_connect_result(body), resolved)
        _lib._register_client(client)
    except BaseException:
        transport.close()
        raise

    logger.debug("Connected to %s", resolved)
    return client


def connect_with_config(config: ConnectionConfig) -> Client:
    return connect(config.address, config.timeout_ms)
