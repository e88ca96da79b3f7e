"""Shared fixtures: an in-process fake fabric manager daemon."""

from __future__ import annotations

import dataclasses
import threading
import time
from collections.abc import Callable, Iterator
from concurrent import futures

import grpc
import pytest

import fabricmanager._lib as lib_mod
from fabricmanager._codec import (
    FABRIC_PARTITION_LIST_VERSION,
    NVLINK_FAILED_DEVICES_VERSION,
    UNSUPPORTED_PARTITION_LIST_VERSION,
    decode_activated_list,
    decode_connect_params,
    decode_partition_id,
    decode_version_request,
    encode_connect_result,
    encode_failed_devices,
    encode_frame,
    encode_partition_list,
    encode_unsupported_list,
)
from fabricmanager._status import FMError, StatusCode
from fabricmanager._transport import HANDLE_METADATA_KEY, SERVICE_NAME
from fabricmanager._types import (
    NvlinkFailedDevices,
    Partition,
    PartitionGpuInfo,
    UnsupportedPartition,
)

_Handler = Callable[[bytes], bytes]


def _ok(body: bytes = b"") -> bytes:
    return encode_frame(StatusCode.SUCCESS, body)


class FakeFabricManager:
    """Daemon double that keeps partition state and answers codec frames.

    ``forced_status`` makes a method answer with a bare status code,
    ``raw_responses`` replaces a method's response frame entirely and
    ``delays`` holds a method for that many seconds before answering.
    """

    def __init__(
        self,
        partitions: list[Partition] | None = None,
        unsupported: list[UnsupportedPartition] | None = None,
        failed: NvlinkFailedDevices | None = None,
    ) -> None:
        self.partitions: list[Partition] = list(partitions or [])
        self.unsupported: list[UnsupportedPartition] = list(unsupported or [])
        self.failed = failed or NvlinkFailedDevices()
        self.handles: set[int] = set()
        self.connect_params: list[tuple[str, int, bool]] = []
        self.activated_requests: list[list[int]] = []
        self.calls: list[str] = []
        self.forced_status: dict[str, int] = {}
        self.raw_responses: dict[str, bytes] = {}
        self.delays: dict[str, float] = {}
        self.address = ""
        self._next_handle = 1
        self._lock = threading.Lock()

    def _find(self, partition_id: int) -> int:
        for i, partition in enumerate(self.partitions):
            if partition.id == partition_id:
                return i
        raise FMError(StatusCode.PARTITION_ID_NOT_IN_USE)

    def _set_active(self, index: int, active: bool) -> None:
        self.partitions[index] = dataclasses.replace(self.partitions[index], is_active=active)

    # -- method bodies -----------------------------------------------------

    def _connect(self, request: bytes) -> bytes:
        self.connect_params.append(decode_connect_params(request))
        handle = self._next_handle
        self._next_handle += 1
        self.handles.add(handle)
        return _ok(encode_connect_result(handle))

    def _get_supported(self, request: bytes) -> bytes:
        if decode_version_request(request) != FABRIC_PARTITION_LIST_VERSION:
            raise FMError(StatusCode.VERSION_MISMATCH)
        return _ok(encode_partition_list(self.partitions))

    def _activate(self, request: bytes) -> bytes:
        index = self._find(decode_partition_id(request))
        if self.partitions[index].is_active:
            raise FMError(StatusCode.PARTITION_ID_IN_USE)
        self._set_active(index, True)
        return _ok()

    def _deactivate(self, request: bytes) -> bytes:
        index = self._find(decode_partition_id(request))
        if not self.partitions[index].is_active:
            raise FMError(StatusCode.PARTITION_ID_NOT_IN_USE)
        self._set_active(index, False)
        return _ok()

    def _set_activated(self, request: bytes) -> bytes:
        ids = decode_activated_list(request)
        self.activated_requests.append(ids)
        if len(set(ids)) != len(ids):
            raise FMError(StatusCode.BADPARAM)
        for partition_id in ids:
            self._find(partition_id)
        for i, partition in enumerate(self.partitions):
            self._set_active(i, partition.id in ids)
        return _ok()

    def _get_failed(self, request: bytes) -> bytes:
        if decode_version_request(request) != NVLINK_FAILED_DEVICES_VERSION:
            raise FMError(StatusCode.VERSION_MISMATCH)
        return _ok(encode_failed_devices(self.failed))

    def _get_unsupported(self, request: bytes) -> bytes:
        if decode_version_request(request) != UNSUPPORTED_PARTITION_LIST_VERSION:
            raise FMError(StatusCode.VERSION_MISMATCH)
        return _ok(encode_unsupported_list(self.unsupported))

    # -- grpc plumbing -----------------------------------------------------

    def _wrap(self, name: str, body: _Handler) -> grpc.RpcMethodHandler:
        def handler(request: bytes, context: grpc.ServicerContext) -> bytes:
            if name in self.delays:
                time.sleep(self.delays[name])
            with self._lock:
                self.calls.append(name)
                if name in self.raw_responses:
                    return self.raw_responses[name]
                if name in self.forced_status:
                    return encode_frame(self.forced_status[name])
                handle = dict(context.invocation_metadata()).get(HANDLE_METADATA_KEY)
                if name != "Connect" and (handle is None or int(handle) not in self.handles):
                    return encode_frame(StatusCode.CONNECTION_NOT_VALID)
                if name == "Disconnect":
                    self.handles.discard(int(handle))
                    return _ok()
                try:
                    return body(request)
                except FMError as exc:
                    return encode_frame(exc.code)

        return grpc.unary_unary_rpc_method_handler(handler)

    def generic_handler(self) -> grpc.GenericRpcHandler:
        bodies: dict[str, _Handler] = {
            "Connect": self._connect,
            "Disconnect": _ok,
            "GetSupportedFabricPartitions": self._get_supported,
            "ActivateFabricPartition": self._activate,
            "DeactivateFabricPartition": self._deactivate,
            "SetActivatedFabricPartitions": self._set_activated,
            "GetNvlinkFailedDevices": self._get_failed,
            "GetUnsupportedFabricPartitions": self._get_unsupported,
        }
        return grpc.method_handlers_generic_handler(
            SERVICE_NAME, {name: self._wrap(name, body) for name, body in bodies.items()}
        )


def make_gpu(**overrides: object) -> PartitionGpuInfo:
    """Create a PartitionGpuInfo with sensible defaults."""
    defaults: dict[str, object] = {
        "physical_id": 0,
        "uuid": "GPU-aaa",
        "pci_bus_id": "00000000:07:00.0",
        "num_nvlinks_available": 4,
        "max_num_nvlinks": 4,
        "nvlink_line_rate_mbps": 25781,
    }
    defaults.update(overrides)
    return PartitionGpuInfo(**defaults)  # type: ignore[arg-type]


@pytest.fixture(autouse=True)
def _reset_library_state() -> Iterator[None]:
    """Every test starts and ends with the library torn down."""
    lib_mod._initialized = False
    lib_mod._clients.clear()
    yield
    for client in list(lib_mod._clients):
        client._transport.close()
    lib_mod._clients.clear()
    lib_mod._initialized = False


@pytest.fixture
def daemon() -> Iterator[FakeFabricManager]:
    """Fake daemon with one active 1-GPU partition and one empty inactive one."""
    fake = FakeFabricManager(
        partitions=[
            Partition(id=0, is_active=True, gpus=(make_gpu(),)),
            Partition(id=1, is_active=False),
        ],
    )
    server = grpc.server(futures.ThreadPoolExecutor(max_workers=4))
    server.add_generic_rpc_handlers((fake.generic_handler(),))
    port = server.add_insecure_port("localhost:0")
    server.start()
    fake.address = f"localhost:{port}"
    try:
        yield fake
    finally:
        server.stop(grace=None)
