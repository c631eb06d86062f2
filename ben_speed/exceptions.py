"""Exception classes for ben-speed.

Every failure the dispatcher surfaces is one of these, so callers can tell
bad input apart from a failing database query or a failing chunk.
"""

from __future__ import annotations


class SpeedError(Exception):
    """Base exception for all ben-speed errors."""

    pass


class ConfigurationError(SpeedError):
    """Raised when tuning parameters are invalid.

    Example:
        raise ConfigurationError(
            "max_chunk_gb must be positive, got: 0"
        )
    """

    pass


class InvalidInputError(SpeedError):
    """Raised when the input is neither a readable file nor an in-memory table.

    Raised before any work is done, so nothing needs cleaning up.

    Args:
        value: The rejected input
        reason: Why it was rejected

    Attributes:
        value: The rejected input
    """

    def __init__(self, value: object, reason: str) -> None:
        self.value = value
        preview = repr(value)
        if len(preview) > 80:
            preview = preview[:77] + "..."
        super().__init__(f"Unsupported input {preview}: {reason}")


class RelationalExecutionError(SpeedError):
    """Raised when ingestion or a query fails on the relational path.

    The original DuckDB error is kept as ``__cause__``.

    Args:
        stage: Which step failed ("connect", "ingest", "query", "materialize")
        db_file: Database file the connection was opened on
        message: Detail from the underlying error

    Example:
        raise RelationalExecutionError(
            "ingest", "ben_speed.db", "No files found that match the pattern"
        )
    """

    def __init__(self, stage: str, db_file: str, message: str) -> None:
        self.stage = stage
        self.db_file = db_file
        super().__init__(f"[{stage}] DuckDB failed on {db_file}: {message}")


class ChunkExecutionError(SpeedError):
    """Raised when the pipeline fails on one or more chunks.

    Chunks are numbered from 1 in source row order. The message names the
    lowest failing chunk; every failure is kept in ``failures``.

    Args:
        failures: Mapping of chunk number to the exception it raised
        total_chunks: Number of chunks the dataset was split into

    Attributes:
        chunk_number: Lowest failing chunk number
        failures: All failing chunks and their exceptions
        total_chunks: Number of chunks in the run
    """

    def __init__(self, failures: dict[int, BaseException], total_chunks: int) -> None:
        if not failures:
            raise ValueError("ChunkExecutionError needs at least one failure")
        self.failures = dict(sorted(failures.items()))
        self.total_chunks = total_chunks
        self.chunk_number = min(self.failures)

        first = self.failures[self.chunk_number]
        message = (
            f"Pipeline failed on chunk {self.chunk_number} of {total_chunks}: "
            f"{type(first).__name__}: {first}"
        )
        if len(self.failures) > 1:
            message += f" (failed chunks: {list(self.failures)})"
        super().__init__(message)


class RoutingError(SpeedError):
    """Raised when no execution route matches the input.

    Unreachable while the routing table stays exhaustive.
    """

    pass
