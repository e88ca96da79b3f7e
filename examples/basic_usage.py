"""fabricmanager basic usage: list partitions and toggle one of them.

Requirements:
    pip install fabricmanager

Usage:
    python examples/basic_usage.py [address]
"""

import sys

import fabricmanager

address = sys.argv[1] if len(sys.argv) > 1 else "127.0.0.1"

# 1. Initialize the library once per process
fabricmanager.init()

try:
    # 2. Open a session; leaving the block disconnects it
    with fabricmanager.connect(address, timeout_ms=5000) as client:
        partitions = client.get_supported_partitions()
        print(f"Found {len(partitions)} partition(s)")
        for partition in partitions:
            state = "active" if partition.is_active else "inactive"
            print(f"  partition {partition.id}: {state}, GPUs {partition.gpu_physical_ids}")

        inactive = [p for p in partitions if not p.is_active]
        if inactive:
            target = inactive[0].id
            client.activate_partition(target)
            print(f"Activated partition {target}")
            client.deactivate_partition(target)
            print(f"Deactivated partition {target}")

        report = client.get_nvlink_failed_devices()
        if report.healthy:
            print("No NVLink failures detected")
        else:
            print(f"{report.num_gpus} GPU(s) and {report.num_switches} switch(es) with failed links")
finally:
    # 3. Shutdown after every session is closed
    fabricmanager.shutdown()
