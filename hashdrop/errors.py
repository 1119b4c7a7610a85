from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from hashdrop.models import Entry, Mismatch, Unhashable


class HashdropError(RuntimeError):
    """Base class for every error raised by hashdrop."""


class ConfigError(HashdropError):
    pass


class InvalidHashLengthError(HashdropError, ValueError):
    def __init__(self, length: int) -> None:
        super().__init__(f"Invalid hash length {length}: must be between 1 and 64.")
        self.length = length


class InvalidIndexError(HashdropError, IndexError):
    def __init__(self, index: int, num_files: int) -> None:
        super().__init__(
            f"Invalid index specified: {index} (catalog holds {num_files} file(s), "
            f"valid range is {-num_files}..{num_files - 1})"
        )
        self.index = index
        self.num_files = num_files


class NoMatchingRemoteFileError(HashdropError):
    def __init__(self, local_path: str) -> None:
        super().__init__(f"No file with same hash found on server: {local_path}")
        self.local_path = local_path


class InvalidDurationError(HashdropError, ValueError):
    def __init__(self, expression: str, reason: str = "could not parse") -> None:
        super().__init__(f"Invalid duration '{expression}': {reason}")
        self.expression = expression


class RemoteCommandError(HashdropError):
    def __init__(self, operation: str, exit_code: int, stdout: str = "", stderr: str = "") -> None:
        super().__init__(
            f"{operation} exited with {exit_code}. Stdout: {stdout.strip()} Stderr: {stderr.strip()}"
        )
        self.operation = operation
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr


class RemoteToolMissingError(HashdropError):
    def __init__(self, tool: str) -> None:
        super().__init__(f"{tool} not found on remote site.")
        self.tool = tool


class HashCountMismatchError(HashdropError):
    def __init__(self, requested: int, received: int) -> None:
        super().__init__(
            f"Remote hashing returned {received} hash(es) for {requested} requested file(s)."
        )
        self.requested = requested
        self.received = received


class StatCountMismatchError(HashdropError):
    def __init__(self, requested: int, received: int, missing: list[str] | None = None) -> None:
        message = f"Remote stat returned {received} result(s) for {requested} requested file(s)."
        if missing:
            message += f" Missing: {', '.join(missing)}"
        super().__init__(message)
        self.requested = requested
        self.received = received
        self.missing = missing or []


class VerificationMismatchError(HashdropError):
    def __init__(self, failures: list[tuple["Entry", "Mismatch | Unhashable"]], total: int) -> None:
        lines = [
            f"'{entry.relative_path}': {failure.describe()}"
            for entry, failure in failures
        ]
        super().__init__(
            f"{len(failures)} of {total} file(s) failed verification:\n" + "\n".join(lines)
        )
        self.failures = failures
        self.total = total
