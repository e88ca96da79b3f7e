"""Tests for the fmpm command-line front end."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

import fabricmanager
from fabricmanager._types import NvlinkFailedDeviceInfo, NvlinkFailedDevices, UnsupportedPartition
from fabricmanager.cli import CLIError, main, parse_partition_ids

if TYPE_CHECKING:
    from conftest import FakeFabricManager


def test_parse_partition_ids() -> None:
    assert parse_partition_ids("1,2,3") == [1, 2, 3]
    assert parse_partition_ids(" 4 , ,5,") == [4, 5]
    assert parse_partition_ids("") == []


def test_parse_partition_ids_invalid() -> None:
    with pytest.raises(CLIError, match="invalid partition ID 'x'"):
        parse_partition_ids("1,x")


def test_list(daemon: FakeFabricManager, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["--hostname", daemon.address, "list"]) == 0
    out = capsys.readouterr().out
    assert "Found 2 partition(s):" in out
    assert "Partition ID: 0\n  Status: Active" in out
    assert "Partition ID: 1\n  Status: Inactive" in out
    assert "UUID: GPU-aaa" in out
    assert "NVLinks Available: 4/4" in out
    assert not fabricmanager.is_initialized()


def test_options_after_command(
    daemon: FakeFabricManager, capsys: pytest.CaptureFixture[str]
) -> None:
    assert main(["list", "--hostname", daemon.address, "--timeout", "1000"]) == 0
    assert "Found 2 partition(s):" in capsys.readouterr().out
    assert daemon.connect_params[0][1] == 1000


def test_activate_and_error(
    daemon: FakeFabricManager, capsys: pytest.CaptureFixture[str]
) -> None:
    assert main(["--hostname", daemon.address, "activate", "1"]) == 0
    assert "Successfully activated partition 1" in capsys.readouterr().out

    assert main(["--hostname", daemon.address, "activate", "1"]) == 1
    err = capsys.readouterr().err
    assert err.startswith("Error: failed to activate partition 1: FabricManager error -17")
    assert err.count("\n") == 1
    assert not fabricmanager.is_initialized()


def test_deactivate(daemon: FakeFabricManager, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["--hostname", daemon.address, "deactivate", "0"]) == 0
    assert "Successfully deactivated partition 0" in capsys.readouterr().out
    assert not daemon.partitions[0].is_active


def test_set_activated(daemon: FakeFabricManager, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["--hostname", daemon.address, "set-activated", "1"]) == 0
    assert "Successfully set activated partitions: [1]" in capsys.readouterr().out
    assert daemon.activated_requests == [[1]]


def test_set_activated_bad_id(
    daemon: FakeFabricManager, capsys: pytest.CaptureFixture[str]
) -> None:
    assert main(["--hostname", daemon.address, "set-activated", "1,abc"]) == 1
    assert "invalid partition ID 'abc'" in capsys.readouterr().err
    assert daemon.activated_requests == []


def test_unsupported(daemon: FakeFabricManager, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["--hostname", daemon.address, "unsupported"]) == 0
    assert "No unsupported partitions found" in capsys.readouterr().out

    daemon.unsupported = [UnsupportedPartition(id=8, gpu_physical_ids=(2, 3))]
    assert main(["--hostname", daemon.address, "unsupported"]) == 0
    out = capsys.readouterr().out
    assert "Partition ID: 8" in out
    assert "GPU Physical IDs: [2, 3]" in out


def test_nvlink_failed(daemon: FakeFabricManager, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["--hostname", daemon.address, "nvlink-failed"]) == 0
    assert "No NVLink failures detected" in capsys.readouterr().out

    daemon.failed = NvlinkFailedDevices(
        switch_info=(NvlinkFailedDeviceInfo("SW-3", "00000000:a3:00.0", (4, 6)),),
    )
    assert main(["--hostname", daemon.address, "nvlink-failed"]) == 0
    out = capsys.readouterr().out
    assert "NVSwitches with failed NVLinks: 1" in out
    assert "1. UUID: SW-3" in out
    assert "Port Numbers: [4, 6]" in out


def test_legacy_flags(daemon: FakeFabricManager, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["--hostname", daemon.address, "-l"]) == 0
    assert "Found 2 partition(s):" in capsys.readouterr().out

    assert main(["--hostname", daemon.address, "-a", "1"]) == 0
    assert "Successfully activated partition 1" in capsys.readouterr().out

    assert main(["--hostname", daemon.address, "--set-activated-list", "0"]) == 0
    assert daemon.activated_requests == [[0]]


def test_version(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["version"]) == 0
    assert capsys.readouterr().out.strip() == f"fmpm version {fabricmanager.FM_VERSION}"
    assert main(["-v"]) == 0
    assert "fmpm version" in capsys.readouterr().out


def test_no_command_prints_help(capsys: pytest.CaptureFixture[str]) -> None:
    assert main([]) == 0
    assert "usage: fmpm" in capsys.readouterr().out


def test_connect_failure(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["--hostname", "localhost:1", "--timeout", "200", "list"]) == 1
    err = capsys.readouterr().err
    assert err.startswith("Error: failed to connect to FabricManager at localhost:1:")
    assert not fabricmanager.is_initialized()


def test_timeout_out_of_range(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["--hostname", "localhost:1", "--timeout", "4294967296", "list"]) == 1
    err = capsys.readouterr().err
    assert err.startswith("Error: failed to connect to FabricManager at localhost:1:")
    assert "Timeout out of range" in err
    assert not fabricmanager.is_initialized()
