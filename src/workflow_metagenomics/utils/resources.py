# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import os

# Third-Party Imports
import psutil

# ==================================== FUNCTIONS ===================================== #

def available_cpu_count() -> int:
    """Number of CPUs usable by this process, at least 1."""
    try:
        return max(1, len(os.sched_getaffinity(0)))
    except AttributeError:  # Not available on macOS/Windows
        return max(1, os.cpu_count() or 1)


def memory_used_fraction() -> float:
    """Fraction of system memory currently in use, in [0, 1]."""
    fraction = psutil.virtual_memory().percent / 100.0
    return min(1.0, max(0.0, fraction))


def memory_available_fraction() -> float:
    """Fraction of system memory currently available, in [0, 1]."""
    return 1.0 - memory_used_fraction()


def process_memory_mb() -> float:
    """Resident memory of the current process in MB."""
    return psutil.Process().memory_info().rss / 1024 / 1024
