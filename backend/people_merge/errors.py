"""
People Merge - Error Taxonomy

Every error carries the HTTP status and the message shown to the caller.
Errors raised before the merge transaction starts mutating leave the store
untouched; errors raised afterwards roll the transaction back.
"""

from enum import Enum
from typing import Optional


class MergeError(Exception):
    """Base class for all merge failures."""

    status_code: int = 500
    default_message: str = "Merge failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message}


class MissingFieldError(MergeError):
    """A required request field was absent or empty."""

    status_code = 400

    def __init__(self, fields):
        self.fields = list(fields)
        super().__init__(f"{', '.join(self.fields)} are required" if len(self.fields) > 1
                         else f"{self.fields[0]} is required")


class InvalidFieldError(MergeError):
    """A request field was present but malformed."""

    status_code = 400

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"{field} must be a valid UUID")


class AuthenticationError(MergeError):
    """No caller identity, or the credential could not be verified."""

    status_code = 401
    default_message = "Unauthorized"


class AuthorizationError(MergeError):
    """Caller is authenticated but lacks the required group role."""

    status_code = 403
    default_message = "Admin access required"


class ValidationErrorKind(str, Enum):
    SAME_IDENTITY = "same_identity"
    PERSON_NOT_FOUND = "person_not_found"
    GROUP_MISMATCH = "group_mismatch"
    SOURCE_ALREADY_ARCHIVED = "source_already_archived"
    SOURCE_MUST_BE_UNCLAIMED = "source_must_be_unclaimed"
    TARGET_MUST_BE_CLAIMED = "target_must_be_claimed"


_VALIDATION_MESSAGES = {
    ValidationErrorKind.SAME_IDENTITY: "Source and target must differ",
    ValidationErrorKind.PERSON_NOT_FOUND: "People not found",
    ValidationErrorKind.GROUP_MISMATCH: "People must belong to the same group",
    ValidationErrorKind.SOURCE_ALREADY_ARCHIVED: "Source already archived",
    ValidationErrorKind.SOURCE_MUST_BE_UNCLAIMED: "Source must be unclaimed",
    ValidationErrorKind.TARGET_MUST_BE_CLAIMED: "Target must be claimed",
}

_NOT_FOUND_KINDS = frozenset({
    ValidationErrorKind.PERSON_NOT_FOUND,
    ValidationErrorKind.GROUP_MISMATCH,
})


class ValidationError(MergeError):
    """One of the identity rules checked before any mutation failed."""

    def __init__(self, kind: ValidationErrorKind):
        self.kind = kind
        self.status_code = 404 if kind in _NOT_FOUND_KINDS else 400
        super().__init__(_VALIDATION_MESSAGES[kind])


class NotFoundError(MergeError):
    status_code = 404
    default_message = "Not found"


class ConfigurationError(MergeError):
    """The store is not configured or cannot be reached."""

    status_code = 500
    default_message = "Server misconfigured"
