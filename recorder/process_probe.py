"""Process existence checks used for daemon liveness."""
from __future__ import annotations

import os
import signal


def process_exists(pid: int) -> bool:
    """Probe a pid with signal 0. A process owned by another user still counts."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


def terminate(pid: int) -> bool:
    """Send SIGTERM. Returns False when the process is already gone."""
    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        return False
    return True
