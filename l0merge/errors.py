"""
Exceptions raised across the merge run.

Only conditions that leave the cursor or file position ambiguous are
raised: opening failures, seek failures and write failures, plus the
run-level "nothing to do" cases. Per-stream outcomes (too small, no valid
packet, framing corruption, truncation, fully overlapped) are recorded as
stream status / disposition and never interrupt the run.
"""

from __future__ import annotations


class MergeError(Exception):
    """Base class for every error surfaced by l0merge."""

    fatal = True


class CannotOpen(MergeError):
    """An input or output file is unavailable."""

    def __init__(self, path: str, reason: str = "") -> None:
        self.path = path
        msg = f"Can't open {path}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class SeekFailure(MergeError):
    """Repositioning an input failed; position bookkeeping is unrecoverable."""


class WriteFailure(MergeError):
    """A sink could not write its buffered bytes."""


class TooManyInputs(MergeError):
    """More inputs than the configured bound."""


class NoValidInput(MergeError):
    """No input survived initialization."""
