"""Inst-Harness.

Launches and supervises Android test-instrumentation processes:
- spawning `am instrument` through adb
- tapping the instrumentation output stream
- terminating the process exactly once, whoever asks first
"""

__all__ = [
    "cli",
    "config",
    "runtime",
]
