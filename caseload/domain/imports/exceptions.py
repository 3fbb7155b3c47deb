"""Exceptions raised by the import pipeline and the rollback manager."""
from typing import Optional


class ImportPipelineError(Exception):
    """Base class for import pipeline failures."""


class ParseError(ImportPipelineError):
    """The input file cannot be read; the whole run is rejected."""

    def __init__(self, message: str, file_name: Optional[str] = None):
        self.file_name = file_name
        super().__init__(message)


class FileTooLargeError(ParseError):
    """The input file exceeds the configured size ceiling."""

    def __init__(self, file_size: int, max_size: int, file_name: Optional[str] = None):
        self.file_size = file_size
        self.max_size = max_size
        message = (
            f"File size ({round(file_size / 1024 / 1024)}MB) exceeds maximum allowed size "
            f"({round(max_size / 1024 / 1024)}MB)"
        )
        super().__init__(message, file_name=file_name)


class UnsupportedFileTypeError(ParseError):
    """The file extension is not one of the supported import formats."""


class SessionNotFoundError(ImportPipelineError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Import session not found: {session_id}")


class RollbackNotAllowedError(ImportPipelineError):
    """The session is not reversible or has already been rolled back."""

    def __init__(self, session_id: str, reason: str):
        self.session_id = session_id
        self.reason = reason
        super().__init__(f"Import {session_id} cannot be rolled back: {reason}")


class RollbackError(ImportPipelineError):
    """Base class for failures while replaying a rollback."""

    def __init__(self, session_id: str, message: str):
        self.session_id = session_id
        super().__init__(message)


class RollbackDeleteError(RollbackError):
    """Deleting the imported records failed; nothing was changed on the session."""


class RollbackStatsRestoreError(RollbackError):
    """Records were deleted but the prior suite statistics could not be restored."""


class RollbackStatusError(RollbackError):
    """Records were deleted but the session could not be marked rolled back."""
