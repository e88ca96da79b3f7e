"""Core types: immutable snapshots decoded from fabric manager responses."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import NewType

FabricPartitionId = NewType("FabricPartitionId", int)


@dataclass(frozen=True)
class PartitionGpuInfo:
    """One GPU inside a fabric partition."""

    physical_id: int
    uuid: str
    pci_bus_id: str
    num_nvlinks_available: int
    max_num_nvlinks: int
    nvlink_line_rate_mbps: int


@dataclass(frozen=True)
class Partition:
    """A supported fabric partition as reported by the daemon."""

    id: int
    is_active: bool
    gpus: tuple[PartitionGpuInfo, ...] = field(default_factory=tuple)

    @property
    def num_gpus(self) -> int:
        return len(self.gpus)

    @property
    def gpu_physical_ids(self) -> list[int]:
        return [gpu.physical_id for gpu in self.gpus]


@dataclass(frozen=True)
class UnsupportedPartition:
    """A partition topology the daemon knows about but cannot support."""

    id: int
    gpu_physical_ids: tuple[int, ...] = field(default_factory=tuple)

    @property
    def num_gpus(self) -> int:
        return len(self.gpu_physical_ids)


@dataclass(frozen=True)
class NvlinkFailedDeviceInfo:
    """A GPU or NVSwitch with one or more failed NVLink ports."""

    uuid: str
    pci_bus_id: str
    port_nums: tuple[int, ...] = field(default_factory=tuple)

    @property
    def num_ports(self) -> int:
        return len(self.port_nums)


@dataclass(frozen=True)
class NvlinkFailedDevices:
    """NVLink health snapshot. All-empty means a healthy fabric."""

    gpu_info: tuple[NvlinkFailedDeviceInfo, ...] = field(default_factory=tuple)
    switch_info: tuple[NvlinkFailedDeviceInfo, ...] = field(default_factory=tuple)

    @property
    def num_gpus(self) -> int:
        return len(self.gpu_info)

    @property
    def num_switches(self) -> int:
        return len(self.switch_info)

    @property
    def healthy(self) -> bool:
        return not self.gpu_info and not self.switch_info
