"""Fixed-layout versioned message codec for the fabric manager wire format.

Every top-level structure starts with a ``u32`` version tag built as
``size_in_bytes | (revision << 24)``. Strings live in fixed, NUL-terminated
buffers and lists live in fixed-capacity arrays with an explicit count.
All integers are little-endian and structures carry no padding.
"""

from __future__ import annotations

import struct
from collections.abc import Sequence

from fabricmanager._status import FMError, ProtocolError, StatusCode
from fabricmanager._types import (
    NvlinkFailedDeviceInfo,
    NvlinkFailedDevices,
    Partition,
    PartitionGpuInfo,
    UnsupportedPartition,
)

FM_CMD_PORT_NUMBER = 6666
FM_MAX_STR_LENGTH = 256
FM_MAX_NUM_GPUS = 16
FM_MAX_FABRIC_PARTITIONS = 64
FM_MAX_NUM_NVLINK_PORTS = 64
FM_MAX_NUM_NVSWITCHES = 12
FM_UUID_BUFFER_SIZE = 80
FM_DEVICE_PCI_BUS_ID_BUFFER_SIZE = 32

_UUID = FM_UUID_BUFFER_SIZE
_PCI = FM_DEVICE_PCI_BUS_ID_BUFFER_SIZE

_U32 = struct.Struct("<I")
_STATUS = struct.Struct("<i")

_CONNECT_PARAMS = struct.Struct(f"<I{FM_MAX_STR_LENGTH}sII")
_CONNECT_RESULT = struct.Struct("<IQ")
_PARTITION_ID_PARAMS = struct.Struct("<II")

_GPU_INFO = struct.Struct(f"<I{_UUID}s{_PCI}sIII")
_PARTITION_INFO_HEAD = struct.Struct("<III")
_PARTITION_INFO_SIZE = _PARTITION_INFO_HEAD.size + FM_MAX_NUM_GPUS * _GPU_INFO.size
_PARTITION_LIST_HEAD = struct.Struct("<III")
_PARTITION_LIST_SIZE = (
    _PARTITION_LIST_HEAD.size + FM_MAX_FABRIC_PARTITIONS * _PARTITION_INFO_SIZE
)

_ACTIVATED_LIST = struct.Struct(f"<II{FM_MAX_FABRIC_PARTITIONS}I")

_FAILED_DEVICE = struct.Struct(f"<{_UUID}s{_PCI}sI{FM_MAX_NUM_NVLINK_PORTS}I")
_FAILED_DEVICES_HEAD = struct.Struct("<III")
_FAILED_DEVICES_SIZE = (
    _FAILED_DEVICES_HEAD.size
    + (FM_MAX_NUM_GPUS + FM_MAX_NUM_NVSWITCHES) * _FAILED_DEVICE.size
)

_UNSUPPORTED_INFO = struct.Struct(f"<II{FM_MAX_NUM_GPUS}I")
_UNSUPPORTED_LIST_HEAD = struct.Struct("<II")
_UNSUPPORTED_LIST_SIZE = (
    _UNSUPPORTED_LIST_HEAD.size + FM_MAX_FABRIC_PARTITIONS * _UNSUPPORTED_INFO.size
)


def make_version(size: int, revision: int) -> int:
    """Build a version tag from a structure size and revision number."""
    if not 0 <= size < (1 << 24):
        raise ValueError(f"structure size out of range: {size}")
    if not 0 <= revision < (1 << 8):
        raise ValueError(f"revision out of range: {revision}")
    return size | (revision << 24)


def split_version(tag: int) -> tuple[int, int]:
    """Return ``(size, revision)`` encoded in a version tag."""
    return tag & 0xFFFFFF, (tag >> 24) & 0xFF


CONNECT_PARAMS_VERSION = make_version(_CONNECT_PARAMS.size, 1)
CONNECT_RESULT_VERSION = make_version(_CONNECT_RESULT.size, 1)
PARTITION_ID_PARAMS_VERSION = make_version(_PARTITION_ID_PARAMS.size, 1)
FABRIC_PARTITION_LIST_VERSION = make_version(_PARTITION_LIST_SIZE, 2)
ACTIVATED_PARTITION_LIST_VERSION = make_version(_ACTIVATED_LIST.size, 1)
NVLINK_FAILED_DEVICES_VERSION = make_version(_FAILED_DEVICES_SIZE, 1)
UNSUPPORTED_PARTITION_LIST_VERSION = make_version(_UNSUPPORTED_LIST_SIZE, 1)


# -- primitives ------------------------------------------------------------


def encode_string(value: str, size: int) -> bytes:
    """Encode into a zero-padded buffer of exactly ``size`` bytes.

    Input longer than ``size - 1`` bytes is cut at the last whole UTF-8
    character that fits, so the buffer always ends in a terminator.
    """
    data = value.encode("utf-8")
    if len(data) > size - 1:
        data = data[: size - 1].decode("utf-8", "ignore").encode("utf-8")
    return data.ljust(size, b"\0")


def decode_string(raw: bytes, size: int) -> str:
    """Decode up to the first NUL within the first ``size`` bytes."""
    return raw[:size].split(b"\0", 1)[0].decode("utf-8", "replace")


def _require(payload: bytes, size: int, what: str) -> None:
    if len(payload) < size:
        raise ProtocolError(f"{what}: expected {size} bytes, got {len(payload)}")


def _check_count(count: int, capacity: int, what: str) -> None:
    if count > capacity:
        raise ProtocolError(f"{what}: count {count} exceeds capacity {capacity}")


def check_version(payload: bytes, expected: int) -> None:
    """Raise FMError(VERSION_MISMATCH) when the leading tag is not ``expected``."""
    _require(payload, _U32.size, "version tag")
    (tag,) = _U32.unpack_from(payload)
    if tag != expected:
        size, revision = split_version(tag)
        want_size, want_revision = split_version(expected)
        raise FMError(
            StatusCode.VERSION_MISMATCH,
            f"Version mismatch (got size {size} rev {revision}, "
            f"expected size {want_size} rev {want_revision})",
        )


def encode_version_request(tag: int) -> bytes:
    """Query requests carry only the tag of the structure they expect back."""
    return _U32.pack(tag)


def decode_version_request(payload: bytes) -> int:
    _require(payload, _U32.size, "version request")
    return int(_U32.unpack_from(payload)[0])


def encode_frame(status: int, body: bytes = b"") -> bytes:
    """Response frame: ``i32`` status followed by the structure bytes."""
    return _STATUS.pack(status) + body


def decode_frame(data: bytes) -> tuple[int, bytes]:
    _require(data, _STATUS.size, "response frame")
    (status,) = _STATUS.unpack_from(data)
    return int(status), data[_STATUS.size:]


# -- connect ---------------------------------------------------------------


def encode_connect_params(address: str, timeout_ms: int, is_unix_socket: bool) -> bytes:
    return _CONNECT_PARAMS.pack(
        CONNECT_PARAMS_VERSION,
        encode_string(address, FM_MAX_STR_LENGTH),
        timeout_ms,
        1 if is_unix_socket else 0,
    )


def decode_connect_params(payload: bytes) -> tuple[str, int, bool]:
    """Return ``(address, timeout_ms, is_unix_socket)``."""
    check_version(payload, CONNECT_PARAMS_VERSION)
    _require(payload, _CONNECT_PARAMS.size, "connect params")
    _, address, timeout_ms, is_unix = _CONNECT_PARAMS.unpack_from(payload)
    return decode_string(address, FM_MAX_STR_LENGTH), timeout_ms, bool(is_unix)


def encode_connect_result(handle: int) -> bytes:
    return _CONNECT_RESULT.pack(CONNECT_RESULT_VERSION, handle)


def decode_connect_result(payload: bytes) -> int:
    check_version(payload, CONNECT_RESULT_VERSION)
    _require(payload, _CONNECT_RESULT.size, "connect result")
    return int(_CONNECT_RESULT.unpack_from(payload)[1])


# -- partition id ----------------------------------------------------------


def encode_partition_id(partition_id: int) -> bytes:
    return _PARTITION_ID_PARAMS.pack(PARTITION_ID_PARAMS_VERSION, partition_id)


def decode_partition_id(payload: bytes) -> int:
    check_version(payload, PARTITION_ID_PARAMS_VERSION)
    _require(payload, _PARTITION_ID_PARAMS.size, "partition id params")
    return int(_PARTITION_ID_PARAMS.unpack_from(payload)[1])


# -- supported partitions --------------------------------------------------


def _encode_gpu_info(buf: bytearray, offset: int, gpu: PartitionGpuInfo) -> None:
    _GPU_INFO.pack_into(
        buf,
        offset,
        gpu.physical_id,
        encode_string(gpu.uuid, _UUID),
        encode_string(gpu.pci_bus_id, _PCI),
        gpu.num_nvlinks_available,
        gpu.max_num_nvlinks,
        gpu.nvlink_line_rate_mbps,
    )


def _decode_gpu_info(payload: bytes, offset: int) -> PartitionGpuInfo:
    physical_id, uuid, pci, available, maximum, rate = _GPU_INFO.unpack_from(
        payload, offset
    )
    if available > maximum:
        raise ProtocolError(f"gpu {physical_id}: {available} of {maximum} NVLinks available")
    return PartitionGpuInfo(
        physical_id=physical_id,
        uuid=decode_string(uuid, _UUID),
        pci_bus_id=decode_string(pci, _PCI),
        num_nvlinks_available=available,
        max_num_nvlinks=maximum,
        nvlink_line_rate_mbps=rate,
    )


def encode_partition_list(partitions: Sequence[Partition]) -> bytes:
    _check_count(len(partitions), FM_MAX_FABRIC_PARTITIONS, "partition list")
    buf = bytearray(_PARTITION_LIST_SIZE)
    _PARTITION_LIST_HEAD.pack_into(
        buf, 0, FABRIC_PARTITION_LIST_VERSION, len(partitions), FM_MAX_FABRIC_PARTITIONS
    )
    for i, partition in enumerate(partitions):
        _check_count(partition.num_gpus, FM_MAX_NUM_GPUS, f"partition {partition.id} gpus")
        base = _PARTITION_LIST_HEAD.size + i * _PARTITION_INFO_SIZE
        _PARTITION_INFO_HEAD.pack_into(
            buf, base, partition.id, 1 if partition.is_active else 0, partition.num_gpus
        )
        for j, gpu in enumerate(partition.gpus):
            _encode_gpu_info(buf, base + _PARTITION_INFO_HEAD.size + j * _GPU_INFO.size, gpu)
    return bytes(buf)


def decode_partition_list(payload: bytes) -> list[Partition]:
    check_version(payload, FABRIC_PARTITION_LIST_VERSION)
    _require(payload, _PARTITION_LIST_SIZE, "partition list")
    _, num_partitions, _ = _PARTITION_LIST_HEAD.unpack_from(payload)
    _check_count(num_partitions, FM_MAX_FABRIC_PARTITIONS, "partition list")

    partitions: list[Partition] = []
    for i in range(num_partitions):
        base = _PARTITION_LIST_HEAD.size + i * _PARTITION_INFO_SIZE
        partition_id, is_active, num_gpus = _PARTITION_INFO_HEAD.unpack_from(payload, base)
        _check_count(num_gpus, FM_MAX_NUM_GPUS, f"partition {partition_id} gpus")
        gpus = tuple(
            _decode_gpu_info(payload, base + _PARTITION_INFO_HEAD.size + j * _GPU_INFO.size)
            for j in range(num_gpus)
        )
        partitions.append(Partition(id=partition_id, is_active=is_active != 0, gpus=gpus))
    return partitions


# -- activated partitions --------------------------------------------------


def encode_activated_list(partition_ids: Sequence[int]) -> bytes:
    _check_count(len(partition_ids), FM_MAX_FABRIC_PARTITIONS, "activated partition list")
    ids = list(partition_ids) + [0] * (FM_MAX_FABRIC_PARTITIONS - len(partition_ids))
    return _ACTIVATED_LIST.pack(ACTIVATED_PARTITION_LIST_VERSION, len(partition_ids), *ids)


def decode_activated_list(payload: bytes) -> list[int]:
    check_version(payload, ACTIVATED_PARTITION_LIST_VERSION)
    _require(payload, _ACTIVATED_LIST.size, "activated partition list")
    _, count, *ids = _ACTIVATED_LIST.unpack_from(payload)
    _check_count(count, FM_MAX_FABRIC_PARTITIONS, "activated partition list")
    return list(ids[:count])


# -- nvlink failed devices -------------------------------------------------


def _encode_failed_device(buf: bytearray, offset: int, dev: NvlinkFailedDeviceInfo) -> None:
    _check_count(dev.num_ports, FM_MAX_NUM_NVLINK_PORTS, f"device {dev.uuid} ports")
    ports = list(dev.port_nums) + [0] * (FM_MAX_NUM_NVLINK_PORTS - dev.num_ports)
    _FAILED_DEVICE.pack_into(
        buf,
        offset,
        encode_string(dev.uuid, _UUID),
        encode_string(dev.pci_bus_id, _PCI),
        dev.num_ports,
        *ports,
    )


def _decode_failed_device(payload: bytes, offset: int) -> NvlinkFailedDeviceInfo:
    uuid, pci, num_ports, *ports = _FAILED_DEVICE.unpack_from(payload, offset)
    _check_count(num_ports, FM_MAX_NUM_NVLINK_PORTS, "failed device ports")
    port_nums = tuple(ports[:num_ports])
    for port in port_nums:
        if port >= FM_MAX_NUM_NVLINK_PORTS:
            raise ProtocolError(f"port number {port} out of range")
    return NvlinkFailedDeviceInfo(
        uuid=decode_string(uuid, _UUID),
        pci_bus_id=decode_string(pci, _PCI),
        port_nums=port_nums,
    )


def encode_failed_devices(report: NvlinkFailedDevices) -> bytes:
    _check_count(report.num_gpus, FM_MAX_NUM_GPUS, "failed gpus")
    _check_count(report.num_switches, FM_MAX_NUM_NVSWITCHES, "failed switches")
    buf = bytearray(_FAILED_DEVICES_SIZE)
    _FAILED_DEVICES_HEAD.pack_into(
        buf, 0, NVLINK_FAILED_DEVICES_VERSION, report.num_gpus, report.num_switches
    )
    gpu_base = _FAILED_DEVICES_HEAD.size
    switch_base = gpu_base + FM_MAX_NUM_GPUS * _FAILED_DEVICE.size
    for i, dev in enumerate(report.gpu_info):
        _encode_failed_device(buf, gpu_base + i * _FAILED_DEVICE.size, dev)
    for i, dev in enumerate(report.switch_info):
        _encode_failed_device(buf, switch_base + i * _FAILED_DEVICE.size, dev)
    return bytes(buf)


def decode_failed_devices(payload: bytes) -> NvlinkFailedDevices:
    check_version(payload, NVLINK_FAILED_DEVICES_VERSION)
    _require(payload, _FAILED_DEVICES_SIZE, "nvlink failed devices")
    _, num_gpus, num_switches = _FAILED_DEVICES_HEAD.unpack_from(payload)
    _check_count(num_gpus, FM_MAX_NUM_GPUS, "failed gpus")
    _check_count(num_switches, FM_MAX_NUM_NVSWITCHES, "failed switches")

    gpu_base = _FAILED_DEVICES_HEAD.size
    switch_base = gpu_base + FM_MAX_NUM_GPUS * _FAILED_DEVICE.size
    return NvlinkFailedDevices(
        gpu_info=tuple(
            _decode_failed_device(payload, gpu_base + i * _FAILED_DEVICE.size)
            for i in range(num_gpus)
        ),
        switch_info=tuple(
            _decode_failed_device(payload, switch_base + i * _FAILED_DEVICE.size)
            for i in range(num_switches)
        ),
    )


# -- unsupported partitions ------------------------------------------------


def encode_unsupported_list(partitions: Sequence[UnsupportedPartition]) -> bytes:
    _check_count(len(partitions), FM_MAX_FABRIC_PARTITIONS, "unsupported partition list")
    buf = bytearray(_UNSUPPORTED_LIST_SIZE)
    _UNSUPPORTED_LIST_HEAD.pack_into(
        buf, 0, UNSUPPORTED_PARTITION_LIST_VERSION, len(partitions)
    )
    for i, partition in enumerate(partitions):
        _check_count(partition.num_gpus, FM_MAX_NUM_GPUS, f"partition {partition.id} gpus")
        ids = list(partition.gpu_physical_ids) + [0] * (FM_MAX_NUM_GPUS - partition.num_gpus)
        _UNSUPPORTED_INFO.pack_into(
            buf,
            _UNSUPPORTED_LIST_HEAD.size + i * _UNSUPPORTED_INFO.size,
            partition.id,
            partition.num_gpus,
            *ids,
        )
    return bytes(buf)


def decode_unsupported_list(payload: bytes) -> list[UnsupportedPartition]:
    check_version(payload, UNSUPPORTED_PARTITION_LIST_VERSION)
    _require(payload, _UNSUPPORTED_LIST_SIZE, "unsupported partition list")
    _, num_partitions = _UNSUPPORTED_LIST_HEAD.unpack_from(payload)
    _check_count(num_partitions, FM_MAX_FABRIC_PARTITIONS, "unsupported partition list")

    partitions: list[UnsupportedPartition] = []
    for i in range(num_partitions):
        partition_id, num_gpus, *ids = _UNSUPPORTED_INFO.unpack_from(
            payload, _UNSUPPORTED_LIST_HEAD.size + i * _UNSUPPORTED_INFO.size
        )
        _check_count(num_gpus, FM_MAX_NUM_GPUS, f"partition {partition_id} gpus")
        partitions.append(
            UnsupportedPartition(id=partition_id, gpu_physical_ids=tuple(ids[:num_gpus]))
        )
    return partitions
