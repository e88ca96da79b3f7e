"""fabricmanager error handling: decide retry policy from the error category.

Usage:
    python examples/error_handling.py [address]
"""

import sys
import time

import fabricmanager

address = sys.argv[1] if len(sys.argv) > 1 else "127.0.0.1"
max_attempts = 3

fabricmanager.init()

try:
    client = None
    for attempt in range(1, max_attempts + 1):
        try:
            client = fabricmanager.connect(address, timeout_ms=1000)
            break
        except fabricmanager.FMError as exc:
            if not fabricmanager.is_connection_error(exc):
                raise
            print(f"Attempt {attempt}: {exc}")
            time.sleep(0.5 * attempt)

    if client is None:
        print("Giving up: fabric manager unreachable")
        sys.exit(1)

    with client:
        # Activating an already active partition is rejected, never a no-op.
        for partition in client.get_supported_partitions():
            if partition.is_active:
                try:
                    client.activate_partition(partition.id)
                except fabricmanager.FMError as exc:
                    if fabricmanager.is_partition_error(exc):
                        print(f"Partition error (expected): {exc}")
                    else:
                        raise
                break

        try:
            client.activate_partition(99999)
        except fabricmanager.FMError as exc:
            if fabricmanager.is_resource_error(exc) or fabricmanager.is_partition_error(exc):
                print(f"Caller-side error, not retrying: {exc}")
            else:
                print(f"Terminal error: {exc}")

    for err in (
        fabricmanager.FMError(fabricmanager.StatusCode.CONNECTION_NOT_VALID),
        fabricmanager.FMError(fabricmanager.StatusCode.RESOURCE_BAD),
        fabricmanager.FMError(fabricmanager.StatusCode.PARTITION_ID_NOT_IN_USE),
        RuntimeError("not a fabric manager error"),
    ):
        print(err)
        print(f"  connection: {fabricmanager.is_connection_error(err)}")
        print(f"  resource:   {fabricmanager.is_resource_error(err)}")
        print(f"  partition:  {fabricmanager.is_partition_error(err)}")
finally:
    fabricmanager.shutdown()
