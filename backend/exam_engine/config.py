"""
Runtime configuration for the exam session engine.

All values are read from the environment once at import time so that a
container can be tuned without code changes.
"""

import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# ──────────────────────────────────────────────────────────────
# Timing
# ──────────────────────────────────────────────────────────────
SYNC_INTERVAL_SECONDS = float(os.getenv("SYNC_INTERVAL_SECONDS", "5"))
CLOCK_TICK_SECONDS = float(os.getenv("CLOCK_TICK_SECONDS", "1"))

# Consecutive failed syncs before the client reports "unsaved"
UNSAVED_AFTER_FAILURES = int(os.getenv("UNSAVED_AFTER_FAILURES", "3"))

# Background expiry sweep over in-progress attempts
EXPIRY_SWEEP_ENABLED = _env_bool("EXPIRY_SWEEP_ENABLED", True)

# ──────────────────────────────────────────────────────────────
# Identity
# The upstream auth service validates credentials and forwards the
# caller's opaque student id in this header.
# ──────────────────────────────────────────────────────────────
STUDENT_ID_HEADER = os.getenv("STUDENT_ID_HEADER", "X-Student-ID")

# ──────────────────────────────────────────────────────────────
# Marking defaults for tests that do not configure their own
# ──────────────────────────────────────────────────────────────
DEFAULT_MARKS_PER_CORRECT = float(os.getenv("DEFAULT_MARKS_PER_CORRECT", "3"))
DEFAULT_NEGATIVE_MARKS = float(os.getenv("DEFAULT_NEGATIVE_MARKS", "1"))
