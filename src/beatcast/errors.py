"""
Exception hierarchy for beatcast.

Fatal conditions (bad configuration, undecodable input, misconfigured
operators) are raised before any datagram leaves the process. Network send
failures are never raised; the transport logs them and moves on.
"""


class BeatcastError(Exception):
    """Base class for all beatcast errors."""


class ConfigError(BeatcastError, ValueError):
    """Raised for invalid configuration values or an empty event filter."""


class AudioDecodeError(BeatcastError, IOError):
    """Raised when the input file is missing, unreadable, or undecodable."""


class AnalysisError(BeatcastError, RuntimeError):
    """Raised when an extraction operator is misconfigured or fails."""


class AnalysisCancelled(BeatcastError):
    """Raised when cancellation is requested while analysis passes run.

    This is not a failure: the CLI maps it to exit status 130.
    """
