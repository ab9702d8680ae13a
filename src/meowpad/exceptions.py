"""Custom exceptions for meowpad.

Provides a structured exception hierarchy with error codes and
machine-readable error information. Storage-level failures are always
translated into one of these before reaching a caller.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Lookup errors (1xxx)
    NOT_FOUND = 1000
    LINK_NOT_FOUND = 1001
    NOTE_NOT_FOUND = 1002
    TAG_NOT_FOUND = 1003

    # Uniqueness errors (2xxx)
    DUPLICATE_URL = 2001
    DUPLICATE_TITLE = 2002
    DUPLICATE_RELATION = 2003
    ALREADY_TAGGED = 2004

    # Validation errors (3xxx)
    VALIDATION_FAILED = 3001
    SELF_RELATION = 3002
    INVALID_TAG_TARGET = 3003
    INVALID_TAG = 3004
    INVALID_URL = 3005

    # Capture errors (4xxx)
    FETCH_FAILED = 4001
    EXTRACTION_FAILED = 4002

    # Storage errors (5xxx)
    STORAGE_FAILED = 5001
    MIGRATION_FAILED = 5002

    # Search errors (6xxx)
    SEARCH_FAILED = 6001
    SEARCH_INVALID_QUERY = 6002

    # Environment errors (7xxx)
    CONFIG_INVALID = 7001
    EDITOR_FAILED = 7002


class MeowpadError(Exception):
    """Base exception for all meowpad errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class NotFoundError(MeowpadError):
    """Raised when an entity cannot be found."""

    entity = "Item"
    default_code = ErrorCode.NOT_FOUND

    def __init__(self, identifier: Any, message: Optional[str] = None):
        super().__init__(
            message or f"{self.entity} '{identifier}' not found",
            code=self.default_code,
            details={"id": str(identifier)}
        )
        self.identifier = identifier


class LinkNotFoundError(NotFoundError):
    """Raised when a link cannot be found."""

    entity = "Link"
    default_code = ErrorCode.LINK_NOT_FOUND


class NoteNotFoundError(NotFoundError):
    """Raised when a note cannot be found."""

    entity = "Note"
    default_code = ErrorCode.NOTE_NOT_FOUND


class TagNotFoundError(NotFoundError):
    """Raised when a tag cannot be found."""

    entity = "Tag"
    default_code = ErrorCode.TAG_NOT_FOUND


class DuplicateUrlError(MeowpadError):
    """Raised when a link with the same URL already exists."""

    def __init__(self, url: str):
        super().__init__(
            f"A link for <{url}> already exists",
            code=ErrorCode.DUPLICATE_URL,
            details={"url": url}
        )
        self.url = url


class DuplicateTitleError(MeowpadError):
    """Raised when a note with the same title already exists."""

    def __init__(self, title: str):
        super().__init__(
            f"A note titled '{title}' already exists",
            code=ErrorCode.DUPLICATE_TITLE,
            details={"title": title[:100]}
        )
        self.title = title


class DuplicateRelationError(MeowpadError):
    """Raised when the same directed relation is added twice."""

    def __init__(self, primary_id: Any, related_id: Any):
        super().__init__(
            f"Link '{primary_id}' is already related to '{related_id}'",
            code=ErrorCode.DUPLICATE_RELATION,
            details={"primary_id": str(primary_id), "related_id": str(related_id)}
        )
        self.primary_id = primary_id
        self.related_id = related_id


class AlreadyTaggedError(MeowpadError):
    """Raised when a tag is already attached to the target."""

    def __init__(self, tag_name: str, target: Any):
        super().__init__(
            f"'{target}' is already tagged '{tag_name}'",
            code=ErrorCode.ALREADY_TAGGED,
            details={"tag_name": tag_name, "target": str(target)}
        )
        self.tag_name = tag_name
        self.target = target


class ValidationError(MeowpadError):
    """Raised for general validation errors."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value


class SelfRelationError(ValidationError):
    """Raised when a link would be related to itself."""

    def __init__(self, link_id: Any):
        super().__init__(
            f"Link '{link_id}' cannot be related to itself",
            field="related_id",
            value=link_id,
            code=ErrorCode.SELF_RELATION,
        )
        self.link_id = link_id


class InvalidTagTargetError(ValidationError):
    """Raised when a tag target names both a link and a note, or neither."""

    def __init__(self, link_id: Any = None, note_id: Any = None):
        which = "both" if link_id is not None else "neither"
        super().__init__(
            f"A tag must target exactly one of link or note, got {which}",
            field="target",
            value=f"link={link_id}, note={note_id}",
            code=ErrorCode.INVALID_TAG_TARGET,
        )


class InvalidTagError(ValidationError):
    """Raised when a tag name cannot be turned into a slug."""

    def __init__(self, tag_name: str):
        super().__init__(
            f"Invalid tag `{tag_name}`",
            field="tag_name",
            value=tag_name,
            code=ErrorCode.INVALID_TAG,
        )
        self.tag_name = tag_name


class InvalidUrlError(ValidationError):
    """Raised when a URL is malformed or not http(s)."""

    def __init__(self, url: str, reason: str):
        super().__init__(
            f"<{url}> is an invalid URL: {reason}",
            field="url",
            value=url,
            code=ErrorCode.INVALID_URL,
        )
        self.url = url
        self.reason = reason


class FetchError(MeowpadError):
    """Raised when a remote resource cannot be retrieved."""

    def __init__(
        self,
        url: str,
        reason: str,
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None
    ):
        details: Dict[str, Any] = {"url": url}
        if status_code is not None:
            details["status_code"] = status_code
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(
            f"Unable to fetch <{url}>: {reason}",
            code=ErrorCode.FETCH_FAILED,
            details=details
        )
        self.url = url
        self.reason = reason
        self.status_code = status_code
        self.original_error = original_error


class ExtractionFailure(MeowpadError):
    """Raised when no readable text can be extracted from a document.

    Never fatal: the capture pipeline degrades to storing the link
    without indexed content.
    """

    def __init__(
        self,
        url: str,
        reason: str,
        title: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details: Dict[str, Any] = {"url": url}
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(
            f"No readable content in <{url}>: {reason}",
            code=ErrorCode.EXTRACTION_FAILED,
            details=details
        )
        self.url = url
        self.reason = reason
        # Best-effort title salvaged before extraction gave up
        self.title = title


class StorageError(MeowpadError):
    """Raised for storage failures not covered by a more specific error."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_FAILED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.original_error = original_error


# Alias matching the error kind name used throughout the docs
StoreError = StorageError


class MigrationError(StorageError):
    """Raised when the schema cannot be brought to the expected version.

    Fatal: the store must not serve any operation afterwards.
    """

    def __init__(
        self,
        message: str,
        version: Optional[int] = None,
        name: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(
            message,
            operation="migrate",
            code=ErrorCode.MIGRATION_FAILED,
            original_error=original_error
        )
        self.version = version
        self.name = name
        if version is not None:
            self.details["version"] = version
        if name:
            self.details["step"] = name


class SearchError(MeowpadError):
    """Raised for search-related errors."""

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        code: ErrorCode = ErrorCode.SEARCH_FAILED
    ):
        details = {}
        if query:
            details["query"] = query[:100]  # Truncate for safety

        super().__init__(message, code=code, details=details)
        self.query = query


class ConfigurationError(MeowpadError):
    """Raised for configuration-related errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONFIG_INVALID
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, code=code, details=details)
        self.config_key = config_key


class EditorError(MeowpadError):
    """Raised when the external editor fails or cannot be started."""

    def __init__(self, command: str, original_error: Optional[Exception] = None):
        details: Dict[str, Any] = {"command": command}
        if original_error:
            details["original_error"] = str(original_error)[:200]
        super().__init__(
            f"Editor '{command}' failed",
            code=ErrorCode.EDITOR_FAILED,
            details=details
        )
        self.command = command
        self.original_error = original_error
