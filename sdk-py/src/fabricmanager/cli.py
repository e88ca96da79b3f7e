"""fmpm: command-line partition manager for the fabric manager daemon."""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Callable, Sequence

import fabricmanager
from fabricmanager._client import DEFAULT_TIMEOUT_MS, Client, connect_with_config
from fabricmanager._config import ConnectionConfig
from fabricmanager._status import FMError, ProtocolError
from fabricmanager._types import NvlinkFailedDeviceInfo

logger = logging.getLogger("fabricmanager.cli")

_UINT32_MAX = 0xFFFFFFFF


class CLIError(Exception):
    """A failed command, already phrased for the user."""


def _partition_id(text: str) -> int:
    try:
        value = int(text, 10)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid partition ID: {text!r}") from None
    if not 0 <= value <= _UINT32_MAX:
        raise argparse.ArgumentTypeError(f"partition ID out of range: {text}")
    return value


def parse_partition_ids(text: str) -> list[int]:
    """Parse a comma-separated ID list. Blank entries are skipped."""
    ids: list[int] = []
    for part in text.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            ids.append(_partition_id(part))
        except argparse.ArgumentTypeError as exc:
            raise CLIError(f"invalid partition ID '{part}': {exc}") from None
    return ids


def _connect(args: argparse.Namespace) -> Client:
    config = ConnectionConfig(
        hostname=args.hostname,
        unix_domain_socket=args.unix_domain_socket or None,
        timeout_ms=args.timeout,
    )
    try:
        return connect_with_config(config)
    except FMError as exc:
        raise CLIError(f"failed to connect to FabricManager at {config.address}: {exc}") from exc


def _cmd_list(args: argparse.Namespace) -> int:
    with _connect(args) as client:
        try:
            partitions = client.get_supported_partitions()
        except FMError as exc:
            raise CLIError(f"failed to get partitions: {exc}") from exc

    if not partitions:
        print("No partitions found")
        return 0

    print(f"Found {len(partitions)} partition(s):\n")
    for partition in partitions:
        print(f"Partition ID: {partition.id}")
        print(f"  Status: {'Active' if partition.is_active else 'Inactive'}")
        print(f"  GPUs: {partition.num_gpus}")
        if partition.gpus:
            print("  GPU Details:")
            for gpu in partition.gpus:
                print(f"    Physical ID: {gpu.physical_id}")
                print(f"    UUID: {gpu.uuid}")
                print(f"    PCI Bus ID: {gpu.pci_bus_id}")
                print(f"    NVLinks Available: {gpu.num_nvlinks_available}/{gpu.max_num_nvlinks}")
                print(f"    Line Rate: {gpu.nvlink_line_rate_mbps} MB/s")
                print()
        print()
    return 0


def _cmd_activate(args: argparse.Namespace) -> int:
    with _connect(args) as client:
        try:
            client.activate_partition(args.partition_id)
        except FMError as exc:
            raise CLIError(f"failed to activate partition {args.partition_id}: {exc}") from exc
    print(f"Successfully activated partition {args.partition_id}")
    return 0


def _cmd_deactivate(args: argparse.Namespace) -> int:
    with _connect(args) as client:
        try:
            client.deactivate_partition(args.partition_id)
        except FMError as exc:
            raise CLIError(f"failed to deactivate partition {args.partition_id}: {exc}") from exc
    print(f"Successfully deactivated partition {args.partition_id}")
    return 0


def _print_failed_devices(title: str, devices: Sequence[NvlinkFailedDeviceInfo]) -> None:
    print(title)
    for i, dev in enumerate(devices, start=1):
        print(f"  {i}. UUID: {dev.uuid}")
        print(f"     PCI Bus ID: {dev.pci_bus_id}")
        print(f"     Failed Ports: {dev.num_ports}")
        if dev.port_nums:
            print(f"     Port Numbers: {list(dev.port_nums)}")
        print()


def _cmd_nvlink_failed(args: argparse.Namespace) -> int:
    with _connect(args) as client:
        try:
            report = client.get_nvlink_failed_devices()
        except FMError as exc:
            raise CLIError(f"failed to get NVLink failed devices: {exc}") from exc

    print("NVLink Failed Devices Report:\n")
    print(f"GPUs with failed NVLinks: {report.num_gpus}")
    print(f"NVSwitches with failed NVLinks: {report.num_switches}\n")
    if report.gpu_info:
        _print_failed_devices("Failed GPUs:", report.gpu_info)
    if report.switch_info:
        _print_failed_devices("Failed NVSwitches:", report.switch_info)
    if report.healthy:
        print("No NVLink failures detected")
    return 0


def _cmd_unsupported(args: argparse.Namespace) -> int:
    with _connect(args) as client:
        try:
            partitions = client.get_unsupported_partitions()
        except FMError as exc:
            raise CLIError(f"failed to get unsupported partitions: {exc}") from exc

    if not partitions:
        print("No unsupported partitions found")
        return 0

    print(f"Found {len(partitions)} unsupported partition(s):\n")
    for partition in partitions:
        print(f"Partition ID: {partition.id}")
        print(f"  GPUs: {partition.num_gpus}")
        if partition.gpu_physical_ids:
            print(f"  GPU Physical IDs: {list(partition.gpu_physical_ids)}")
        print()
    return 0


def _cmd_set_activated(args: argparse.Namespace) -> int:
    ids = parse_partition_ids(args.partition_ids)
    with _connect(args) as client:
        try:
            client.set_activated_partitions(ids)
        except FMError as exc:
            raise CLIError(f"failed to set activated partitions: {exc}") from exc
    print(f"Successfully set activated partitions: {ids}")
    return 0


def _cmd_version(args: argparse.Namespace) -> int:
    print(f"fmpm version {fabricmanager.FM_VERSION}")
    return 0


_COMMANDS: dict[str, Callable[[argparse.Namespace], int]] = {
    "list": _cmd_list,
    "activate": _cmd_activate,
    "deactivate": _cmd_deactivate,
    "nvlink-failed": _cmd_nvlink_failed,
    "unsupported": _cmd_unsupported,
    "set-activated": _cmd_set_activated,
    "version": _cmd_version,
}


def _add_connection_options(parser: argparse.ArgumentParser, *, suppress: bool) -> None:
    # Subcommands repeat the options with suppressed defaults so they may
    # appear on either side of the command name.
    def default(value: object) -> object:
        return argparse.SUPPRESS if suppress else value

    parser.add_argument(
        "--hostname",
        default=default("127.0.0.1"),
        help="hostname or IP address (TCP socket) of Fabric Manager",
    )
    parser.add_argument(
        "--unix-domain-socket",
        default=default(None),
        help="UNIX domain socket path for Fabric Manager connection",
    )
    parser.add_argument(
        "--timeout",
        type=int,
        default=default(DEFAULT_TIMEOUT_MS),
        help="connection timeout in milliseconds",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fmpm",
        description=(
            "FM Partition Manager: list, activate and deactivate GPU partitions "
            "managed by the fabric manager's shared NVSwitch feature."
        ),
    )
    _add_connection_options(parser, suppress=False)
    parser.add_argument("--debug", action="store_true", help="enable debug logging")

    legacy = parser.add_argument_group("legacy options")
    legacy.add_argument("-l", "--list", dest="legacy_list", action="store_true",
                        help="list partitions")
    legacy.add_argument("-a", "--activate", dest="legacy_activate", type=_partition_id,
                        metavar="ID", help="activate partition ID")
    legacy.add_argument("-d", "--deactivate", dest="legacy_deactivate", type=_partition_id,
                        metavar="ID", help="deactivate partition ID")
    legacy.add_argument("--get-nvlink-failed-devices", dest="legacy_nvlink_failed",
                        action="store_true", help="query all NVLink failed devices")
    legacy.add_argument("--list-unsupported-partitions", dest="legacy_unsupported",
                        action="store_true", help="query all unsupported fabric partitions")
    legacy.add_argument("--set-activated-list", dest="legacy_set_activated", metavar="IDS",
                        help="set activated partition list")
    legacy.add_argument("-v", "--version", dest="legacy_version", action="store_true",
                        help="show version")

    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    def add(name: str, help_text: str) -> argparse.ArgumentParser:
        cmd = sub.add_parser(name, help=help_text, description=help_text)
        _add_connection_options(cmd, suppress=True)
        return cmd

    add("list", "List all supported fabric partitions")
    add("activate", "Activate a fabric partition").add_argument(
        "partition_id", type=_partition_id, metavar="PARTITION_ID"
    )
    add("deactivate", "Deactivate a fabric partition").add_argument(
        "partition_id", type=_partition_id, metavar="PARTITION_ID"
    )
    add("nvlink-failed", "Query all GPUs and NVSwitches with failed NVLinks")
    add("unsupported", "List unsupported fabric partitions")
    add("set-activated", "Set the list of activated partitions").add_argument(
        "partition_ids", metavar="PARTITION_IDS", help="comma-separated, no spaces"
    )
    add("version", "Show version information")
    return parser


def _resolve_legacy(args: argparse.Namespace) -> str | None:
    if args.legacy_list:
        return "list"
    if args.legacy_activate is not None:
        args.partition_id = args.legacy_activate
        return "activate"
    if args.legacy_deactivate is not None:
        args.partition_id = args.legacy_deactivate
        return "deactivate"
    if args.legacy_nvlink_failed:
        return "nvlink-failed"
    if args.legacy_unsupported:
        return "unsupported"
    if args.legacy_set_activated:
        args.partition_ids = args.legacy_set_activated
        return "set-activated"
    if args.legacy_version:
        return "version"
    return None


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.debug:
        logging.basicConfig(level=logging.DEBUG)

    command = args.command or _resolve_legacy(args)
    if command is None:
        parser.print_help()
        return 0

    try:
        fabricmanager.init()
    except FMError as exc:
        print(f"Error: failed to initialize FabricManager: {exc}", file=sys.stderr)
        return 1

    try:
        return _COMMANDS[command](args)
    except (CLIError, FMError, ProtocolError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        try:
            fabricmanager.shutdown()
        except FMError as exc:
            logger.warning("failed to shutdown FabricManager: %s", exc)


if __name__ == "__main__":
    sys.exit(main())
