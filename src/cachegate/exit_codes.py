"""Numeric process exit codes for the ``cachegate`` CLI.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~cachegate.exceptions.CachegateError` subclass.
Scripts wrapping the CLI can inspect the exit code to tell failure classes
apart without parsing stderr.
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments."""

EXIT_CACHE_ERROR = 3
"""The cache storage could not be read or written."""

EXIT_RATE_LIMITED = 4
"""The request was refused by the rate limiter."""

EXIT_REMOTE_ERROR = 5
"""The remote analysis call failed after all retries."""

EXIT_TIMEOUT = 6
"""The remote analysis call did not finish before its deadline."""
