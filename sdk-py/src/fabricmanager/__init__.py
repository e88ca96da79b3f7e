"""fabricmanager: client for the GPU fabric manager partition control daemon."""

from __future__ import annotations

from fabricmanager._client import DEFAULT_TIMEOUT_MS, Client, connect, connect_with_config
from fabricmanager._codec import (
    FM_CMD_PORT_NUMBER,
    FM_DEVICE_PCI_BUS_ID_BUFFER_SIZE,
    FM_MAX_FABRIC_PARTITIONS,
    FM_MAX_NUM_GPUS,
    FM_MAX_NUM_NVLINK_PORTS,
    FM_MAX_NUM_NVSWITCHES,
    FM_MAX_STR_LENGTH,
    FM_UUID_BUFFER_SIZE,
    make_version,
    split_version,
)
from fabricmanager._config import ConnectionConfig
from fabricmanager._lib import init, is_initialized, shutdown
from fabricmanager._status import (
    FMError,
    ProtocolError,
    StatusCode,
    is_connection_error,
    is_partition_error,
    is_resource_error,
    status_message,
)
from fabricmanager._types import (
    FabricPartitionId,
    NvlinkFailedDeviceInfo,
    NvlinkFailedDevices,
    Partition,
    PartitionGpuInfo,
    UnsupportedPartition,
)

__version__ = "0.1.0"

# Fabric manager API release this client speaks.
FM_VERSION = "575.57.08"

__all__ = [
    "Client",
    "ConnectionConfig",
    "DEFAULT_TIMEOUT_MS",
    "FMError",
    "FM_CMD_PORT_NUMBER",
    "FM_DEVICE_PCI_BUS_ID_BUFFER_SIZE",
    "FM_MAX_FABRIC_PARTITIONS",
    "FM_MAX_NUM_GPUS",
    "FM_MAX_NUM_NVLINK_PORTS",
    "FM_MAX_NUM_NVSWITCHES",
    "FM_MAX_STR_LENGTH",
    "FM_UUID_BUFFER_SIZE",
    "FM_VERSION",
    "FabricPartitionId",
    "NvlinkFailedDeviceInfo",
    "NvlinkFailedDevices",
    "Partition",
    "PartitionGpuInfo",
    "ProtocolError",
    "StatusCode",
    "UnsupportedPartition",
    "__version__",
    "connect",
    "connect_with_config",
    "init",
    "is_connection_error",
    "is_initialized",
    "is_partition_error",
    "is_resource_error",
    "make_version",
    "shutdown",
    "split_version",
    "status_message",
]
