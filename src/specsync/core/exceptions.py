"""
Exception hierarchy for specsync.

Every error carries a human-readable message plus keyword context
(record id, phase, attempted action, ...) so the CLI can point the user at
a narrower command to retry by hand.

Exception Hierarchy:
    SpecSyncError (base)
    ├── ValidationError (bad input, rejected before any I/O)
    │   └── PhaseTransitionError (required sections missing)
    ├── NotFoundError
    │   ├── RecordNotFoundError
    │   └── MappingNotFoundError
    │       ├── NotLinkedError
    │       └── SubEntityNotFoundError
    ├── ConflictError
    │   ├── AlreadySyncedError (lost the creation race)
    │   └── PhaseConflictError (stored phase is not the expected one)
    ├── RemoteError
    │   ├── RemoteNotFoundError (404)
    │   ├── AuthenticationError (401)
    │   ├── RateLimitError (403/429)
    │   │   └── MaxRetriesExceededError
    │   ├── RemoteServerError (5xx)
    │   ├── RemoteRequestError (other 4xx)
    │   └── GraphQLError
    ├── StatusOptionNotFoundError
    ├── InconsistentStateError (rollback failed)
    ├── SpecParseError
    └── ConfigError

Example:
    >>> from specsync.core.exceptions import NotLinkedError
    >>> try:
    ...     raise NotLinkedError("Record is not linked to an issue", record_id="r1")
    ... except NotLinkedError as e:
    ...     print(e.context["record_id"])
    r1
"""


class SpecSyncError(Exception):
    """
    Base exception for all specsync errors.

    Attributes:
        message: Human-readable error message
        context: Additional structured context for the failure
    """

    def __init__(self, message: str, **context: object) -> None:
        """
        Initialize an error with message and context.

        Args:
            message: Human-readable error message
            **context: Additional context as keyword arguments
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Return string representation of the error."""
        return self.message


class ValidationError(SpecSyncError):
    """Raised when input is rejected before any I/O happens."""

    pass


class PhaseTransitionError(ValidationError):
    """
    Raised when a phase transition fails validation.

    Attributes:
        missing: Section titles that are missing or not filled in
    """

    def __init__(self, message: str, missing: list[str], **context: object) -> None:
        super().__init__(message, missing=missing, **context)
        self.missing = missing


class NotFoundError(SpecSyncError):
    """Raised when a record, mapping or remote entity does not exist."""

    pass


class RecordNotFoundError(NotFoundError):
    """Raised when a spec record is not in the local store."""

    def __init__(self, record_id: str, **context: object) -> None:
        super().__init__(f"Spec not found: {record_id}", record_id=record_id, **context)
        self.record_id = record_id


class MappingNotFoundError(NotFoundError):
    """Raised when no sync mapping exists for a local entity."""

    pass


class NotLinkedError(MappingNotFoundError):
    """Raised when a record (or issue) has no counterpart in the other store."""

    pass


class SubEntityNotFoundError(MappingNotFoundError):
    """
    Raised when a task never had a sub-issue created.

    Callers treat this as non-fatal: log it and carry on.
    """

    def __init__(self, task_id: str, **context: object) -> None:
        super().__init__(
            f"Sub-entity not found for task {task_id}", task_id=task_id, **context
        )
        self.task_id = task_id


class ConflictError(SpecSyncError):
    """Raised when concurrent callers disagree about the state of an entity."""

    pass


class AlreadySyncedError(ConflictError):
    """
    Raised when another caller already owns the creation of a remote entity.

    The caller that sees this error made no remote call.
    """

    def __init__(self, entity_type: str, local_id: str, **context: object) -> None:
        super().__init__(
            f"{entity_type} {local_id} is already synced (or being synced) "
            "by another caller",
            entity_type=entity_type,
            local_id=local_id,
            **context,
        )
        self.entity_type = entity_type
        self.local_id = local_id


class PhaseConflictError(ConflictError):
    """Raised when the stored phase differs from the one the caller expected."""

    pass


class RemoteError(SpecSyncError):
    """
    Base class for failures talking to GitHub.

    Attributes:
        status_code: HTTP status code, if the failure had one
    """

    def __init__(self, message: str, status_code: int | None = None, **context: object) -> None:
        super().__init__(message, status_code=status_code, **context)
        self.status_code = status_code


class RemoteNotFoundError(RemoteError):
    """Raised on a 404 response."""

    pass


class AuthenticationError(RemoteError):
    """Raised on a 401 response. Never retried."""

    pass


class RateLimitError(RemoteError):
    """
    Raised on a 403/429 response.

    Attributes:
        retry_after: Seconds the server asked us to wait, if given
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retry_after: float | None = None,
        **context: object,
    ) -> None:
        super().__init__(message, status_code=status_code, retry_after=retry_after, **context)
        self.retry_after = retry_after


class MaxRetriesExceededError(RateLimitError):
    """Raised when every attempt hit the rate limit."""

    def __init__(self, attempts: int, **context: object) -> None:
        super().__init__(
            f"Max retries ({attempts}) exceeded due to rate limiting",
            attempts=attempts,
            **context,
        )
        self.attempts = attempts


class RemoteServerError(RemoteError):
    """Raised on 5xx responses (and transport failures) once retries run out."""

    pass


class RemoteRequestError(RemoteError):
    """Raised on any other 4xx response."""

    pass


class GraphQLError(RemoteError):
    """Raised when a GraphQL response carries an errors array."""

    pass


class StatusOptionNotFoundError(SpecSyncError):
    """Raised when neither the mapped nor the fallback status is offered."""

    pass


class InconsistentStateError(SpecSyncError):
    """
    Raised when rolling back a failed phase transition also failed.

    The database and the Markdown file may now disagree. This requires
    manual intervention.
    """

    pass


class SpecParseError(SpecSyncError):
    """
    Raised when a spec Markdown file cannot be read or parsed.

    Attributes:
        file_path: Path of the offending file
    """

    def __init__(self, message: str, file_path: str, **context: object) -> None:
        super().__init__(message, file_path=file_path, **context)
        self.file_path = file_path


class ConfigError(SpecSyncError):
    """Raised when configuration is missing or invalid."""

    pass
