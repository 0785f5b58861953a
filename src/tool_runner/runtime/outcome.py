"""Exit outcome classification."""

from __future__ import annotations

import signal as _signal
from collections.abc import Collection
from enum import Enum

__all__ = [
    "DEFAULT_ACCEPTED_EXIT_CODES",
    "ExitOutcome",
    "KILL_SIGNALS",
    "LEGACY_ACCEPTED_EXIT_CODES",
    "classify",
    "signal_from_returncode",
]

DEFAULT_ACCEPTED_EXIT_CODES: frozenset[int] = frozenset({0})

# Exit code 6 is a non-error code for the legacy builder tool only
LEGACY_ACCEPTED_EXIT_CODES: frozenset[int] = frozenset({0, 6})

KILL_SIGNALS: frozenset[int] = frozenset(
    int(sig)
    for sig in (
        getattr(_signal, "SIGINT", None),
        getattr(_signal, "SIGTERM", None),
        getattr(_signal, "SIGKILL", None),
    )
    if sig is not None
)


class ExitOutcome(Enum):
    SUCCESS = "success"
    FAILURE = "failure"


def signal_from_returncode(returncode: int | None) -> _signal.Signals | None:
    """Decode a negative asyncio return code into the terminating signal."""
    if returncode is None or returncode >= 0:
        return None
    try:
        return _signal.Signals(-returncode)
    except ValueError:
        return None


def classify(
    exit_code: int | None,
    signal: int | None,
    explicit_kill: bool,
    force: bool,
    accepted_codes: Collection[int] = DEFAULT_ACCEPTED_EXIT_CODES,
) -> ExitOutcome:
    """Map an observed process exit to an outcome.

    A kill signal always means failure, even in force mode. Outside force
    mode any terminating signal (SIGSEGV, SIGABRT...) is a failure too.

    Args:
        exit_code: Exit code, or None when absent (not for signal exits)
        signal: Terminating signal number, or None
        explicit_kill: The orchestrator asked for the process to be killed
        force: Best-effort mode, any non-signal exit is a success
        accepted_codes: Exit codes treated as success

    Returns:
        ExitOutcome.SUCCESS or ExitOutcome.FAILURE
    """
    if signal is not None and int(signal) in KILL_SIGNALS:
        return ExitOutcome.FAILURE

    if force:
        return ExitOutcome.SUCCESS

    # Any other terminating signal is a crash, never an absent exit code
    if signal is not None or explicit_kill:
        return ExitOutcome.FAILURE

    if exit_code is None or exit_code in accepted_codes:
        return ExitOutcome.SUCCESS

    return ExitOutcome.FAILURE
