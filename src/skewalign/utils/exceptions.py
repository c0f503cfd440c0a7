"""
SkewAlign - Custom Exceptions Module

This module defines custom exception classes for the failure cases that
are visible to callers. Angle and geometry indeterminacy is never raised:
it is reported through tagged results instead.
"""


class SkewAlignError(Exception):
    """Base exception for all SkewAlign errors.

    All custom exceptions should inherit from this class to allow
    catching any SkewAlign-specific error.
    """

    def __init__(self, message: str, details: str | None = None) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error message
            details: Optional technical details for debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} ({self.details})"
        return self.message


class RasterizationError(SkewAlignError):
    """Raised when a page cannot be rendered to an image.

    Fatal for the page; never retried inside SkewAlign.
    """

    def __init__(self, page_index: int, reason: str | None = None) -> None:
        """Initialize the exception.

        Args:
            page_index: 0-based index of the page that failed
            reason: Optional reason for the failure
        """
        self.page_index = page_index
        self.reason = reason

        msg = f"Could not rasterize page {page_index + 1}"
        if reason:
            msg += f" - {reason}"

        super().__init__(msg, details=f"page_index={page_index}")


class RecognitionError(SkewAlignError):
    """Raised when text recognition fails for a page image."""

    def __init__(
        self,
        page_index: int,
        reason: str | None = None,
        attempts: int | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            page_index: 0-based index of the page that failed
            reason: Optional reason for the failure
            attempts: Optional number of attempts made before giving up
        """
        self.page_index = page_index
        self.reason = reason
        self.attempts = attempts

        msg = f"Text recognition failed for page {page_index + 1}"
        if reason:
            msg += f" - {reason}"

        details = f"page_index={page_index}"
        if attempts is not None:
            details += f", attempts={attempts}"

        super().__init__(msg, details=details)


class ConfigurationError(SkewAlignError):
    """Raised when there's a configuration-related error."""

    def __init__(self, setting_name: str | None = None, reason: str | None = None) -> None:
        """Initialize the exception.

        Args:
            setting_name: Optional name of the problematic setting
            reason: Optional reason for the error
        """
        self.setting_name = setting_name
        self.reason = reason

        if setting_name:
            msg = f"Configuration error for '{setting_name}'"
        else:
            msg = "Configuration error"

        if reason:
            msg += f": {reason}"

        super().__init__(msg)


class ValidationError(SkewAlignError):
    """Raised when input validation fails."""

    def __init__(
        self,
        field: str,
        value: str | None = None,
        reason: str | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            field: Name of the field that failed validation
            value: Optional value that failed validation
            reason: Optional reason for the validation failure
        """
        self.field = field
        self.value = value
        self.reason = reason

        msg = f"Validation error for '{field}'"
        if reason:
            msg += f": {reason}"

        super().__init__(msg)


class DependencyError(SkewAlignError):
    """Raised when an optional backend or external tool is missing."""

    def __init__(self, dependency: str, hint: str | None = None) -> None:
        """Initialize the exception.

        Args:
            dependency: Name of the missing dependency
            hint: Optional install hint
        """
        self.dependency = dependency
        self.hint = hint

        msg = f"Missing dependency: {dependency}"
        super().__init__(msg, details=hint)


# Exception hierarchy summary:
# SkewAlignError (base)
# ├── RasterizationError
# ├── RecognitionError
# ├── ConfigurationError
# ├── ValidationError
# └── DependencyError
