# cornerstone_core/core/system_info.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
import os
import platform
import time

import psutil

start_time = time.time()


def get_system_info(work_dir: str = None):
    uptime = time.time() - start_time
    info = {
        "os": platform.system(),
        "release": platform.release(),
        "python": platform.python_version(),
        "cpu_percent": psutil.cpu_percent(interval=None),
        "memory": psutil.virtual_memory().percent,
        "uptime_seconds": int(uptime),
        "hostname": platform.node(),
    }
    # Disk headroom where plugin scripts run
    if work_dir and os.path.isdir(work_dir):
        info["plugin_work_dir_disk_percent"] = psutil.disk_usage(work_dir).percent
    return info
