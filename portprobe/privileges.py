"""Detection of raw-socket privileges for the running process."""

import os
import sys

CAP_NET_RAW = 13
_PROC_STATUS = "/proc/self/status"


def _has_cap_net_raw() -> bool:
    try:
        with open(_PROC_STATUS, encoding="ascii") as status:
            for line in status:
                if line.startswith("CapEff:"):
                    mask = int(line.split(":", 1)[1].strip(), 16)
                    return bool((mask >> CAP_NET_RAW) & 1)
    except (OSError, ValueError):
        return False
    return False


def _is_root() -> bool:
    geteuid = getattr(os, "geteuid", None)
    return geteuid is not None and geteuid() == 0


def is_privileged() -> bool:
    """Whether raw packets can be sent: CAP_NET_RAW or root.

    Always false on Windows, where only connect scans are used.
    """
    if sys.platform.startswith("win"):
        return False
    if sys.platform.startswith("linux") and _has_cap_net_raw():
        return True
    return _is_root()