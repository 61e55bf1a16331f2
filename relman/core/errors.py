"""Error payloads and exit codes.

`ReleaseError` is the single error type carried by `Err` results across the
storage, reversioning, publishing and promotion layers. `ErrorCode` maps error
kinds to process exit codes for the CLI.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import IntEnum
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from relman.platform.process import ProcessError

__all__ = ["ErrorCode", "ErrorKind", "ReleaseError", "exit_code_for"]


ErrorKind = Literal[
    "io",
    "command_failed",
    "validation",
    "storage",
    "artifact_not_found",
    "missing_parameter",
    "unsupported_backend",
    "not_found",
    "unverified",
    "config",
]


class ErrorCode(IntEnum):
    """Exit codes for CLI commands.

    These values are used as process exit codes and should remain stable:
    - 0: Success
    - 1: User error (bad input, missing parameters, unknown backend)
    - 2: Environment error (bad config, missing tools)
    - 3: Build error (dpkg-deb, deb-s3 or docker step failed)
    - 4: Network error (storage transfer failed, artifact missing remotely)
    - 5: I/O error (local file missing, permission denied)
    """

    OK = 0
    USER_ERROR = 1
    ENV_ERROR = 2
    BUILD_ERROR = 3
    NETWORK_ERROR = 4
    IO_ERROR = 5

    def __str__(self) -> str:
        return self.name.lower().replace("_", " ")


_EXIT_CODES: dict[str, ErrorCode] = {
    "io": ErrorCode.IO_ERROR,
    "not_found": ErrorCode.IO_ERROR,
    "command_failed": ErrorCode.BUILD_ERROR,
    "unverified": ErrorCode.BUILD_ERROR,
    "validation": ErrorCode.USER_ERROR,
    "missing_parameter": ErrorCode.USER_ERROR,
    "unsupported_backend": ErrorCode.USER_ERROR,
    "storage": ErrorCode.NETWORK_ERROR,
    "artifact_not_found": ErrorCode.NETWORK_ERROR,
    "config": ErrorCode.ENV_ERROR,
}


@dataclass(frozen=True, slots=True)
class ReleaseError:
    """Canonical error payload.

    Attributes:
        kind: Error category, used for exit codes and by callers that react
            to specific failures (e.g. lock contention).
        message: One-line human readable summary.
        hint: Extra detail, usually the full stderr of the failing command.
        stage: State machine stage that failed, if the error came from a
            staged operation (reversioning, promotion).
        context: Artifact/codename being processed when the error occurred.
    """

    kind: ErrorKind
    message: str
    hint: str | None = None
    stage: str | None = None
    context: str | None = None

    @classmethod
    def from_process(
        cls,
        message: str,
        error: ProcessError,
        *,
        kind: ErrorKind = "command_failed",
    ) -> ReleaseError:
        detail = error.stderr.strip() or error.stdout.strip() or None
        return cls(kind=kind, message=f"{message}: {error}", hint=detail)

    def at_stage(self, stage: str) -> ReleaseError:
        if self.stage is not None:
            return self
        return replace(self, stage=stage)

    def with_context(self, context: str) -> ReleaseError:
        return replace(self, context=context)

    def pretty(self) -> str:
        prefix = f"[{self.context}] " if self.context else ""
        where = f" (stage: {self.stage})" if self.stage else ""
        text = f"{prefix}{self.message}{where}"
        if self.hint:
            return f"{text} (hint: {self.hint})"
        return text


def exit_code_for(error: ReleaseError) -> ErrorCode:
    return _EXIT_CODES.get(error.kind, ErrorCode.USER_ERROR)
