"""Runtime helpers for driving instrumentation processes on devices."""
