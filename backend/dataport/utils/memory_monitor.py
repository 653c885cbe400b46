"""Memory monitoring for import workers.

A whole CSV is held in memory while its chunks are processed, so workers
watch their resident size and stop an invocation early (the job resumes in a
fresh one) instead of getting OOM-killed mid-chunk.
"""

import gc
import logging
import resource
import sys

from dataport.core.config import get_settings

logger = logging.getLogger(__name__)

MB = 1024 * 1024


def get_memory_usage() -> int:
    """Resident set size of this process in bytes.

    Reads the current RSS from /proc on Linux; elsewhere falls back to the
    peak RSS reported by getrusage.
    """
    try:
        with open("/proc/self/statm") as statm:
            return int(statm.read().split()[1]) * resource.getpagesize()
    except (OSError, ValueError, IndexError):
        pass
    try:
        usage = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    except (OSError, ValueError) as e:
        logger.warning(f"Could not get memory usage: {e}")
        return 0
    # macOS reports bytes, Linux reports KB
    return usage if sys.platform == "darwin" else usage * 1024


def get_memory_limit() -> int:
    return get_settings().memory_limit_mb * MB


def get_memory_baseline() -> int:
    return get_settings().memory_baseline_mb * MB


def check_memory_exceeded() -> bool:
    """True once usage reaches the configured hard limit."""
    current = get_memory_usage()
    limit = get_memory_limit()
    if current >= limit:
        logger.error(
            f"Memory limit exceeded: {format_bytes(current)} >= {format_bytes(limit)}"
        )
        return True
    return False


def force_gc() -> None:
    collected = gc.collect()
    logger.debug(f"Garbage collection freed {collected} objects")


def format_bytes(bytes_val: float) -> str:
    """Format bytes to human-readable string."""
    for unit in ["B", "KB", "MB", "GB"]:
        if bytes_val < 1024.0:
            return f"{bytes_val:.1f}{unit}"
        bytes_val /= 1024.0
    return f"{bytes_val:.1f}TB"


def log_memory_status(context: str = "") -> None:
    """Log current memory status for debugging."""
    current = get_memory_usage()
    limit = get_memory_limit()
    baseline = get_memory_baseline()
    usage_percent = (current / limit * 100) if limit > 0 else 0

    context_str = f" [{context}]" if context else ""
    level = logging.WARNING if current > baseline else logging.INFO
    logger.log(
        level,
        f"Memory status{context_str}: {format_bytes(current)} / "
        f"{format_bytes(limit)} ({usage_percent:.1f}%) "
        f"[baseline: {format_bytes(baseline)}]",
    )
