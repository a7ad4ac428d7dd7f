"""Exception taxonomy for wilt.

Per-process sampling problems are not exceptions: they come back from the
sampler as ``SampleFailure`` values. Everything here is fatal.
"""


class WiltError(Exception):
    """Base class for fatal wilt errors."""


class EnumerationError(WiltError):
    """The OS process list could not be enumerated."""


class StartupError(WiltError):
    """wilt could not start; raised before the terminal is acquired."""


class TerminalError(WiltError):
    """The terminal display could not be acquired or failed mid-run."""
