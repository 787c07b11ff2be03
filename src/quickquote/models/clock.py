"""Millisecond wall-clock helpers shared by the stores and the pipeline."""
import time


def now_ms() -> int:
    """Milliseconds since the Unix epoch."""
    return int(time.time() * 1000)
