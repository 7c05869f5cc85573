"""Error definitions for the lifecycle.

Every error carries a stable ``code`` for programmatic handling, the name of
the ``operation`` that failed, and the process ``exit_code`` the command line
boundary maps it to. Underlying causes are chained with ``raise ... from``.
"""

from __future__ import annotations

# Process exit codes consumed by the CLI boundary
EXIT_SUCCESS = 0
EXIT_FAILED = 1
EXIT_INVALID_ARGS = 3
EXIT_FAILED_BUILD = 7
EXIT_FAILED_SAVE = 10


class LifecycleError(Exception):
    """Base error for analyze/export operations."""

    default_code = "lifecycle_error"
    default_exit_code = EXIT_FAILED

    def __init__(
        self,
        message: str,
        code: str | None = None,
        operation: str | None = None,
        exit_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code or self.default_code
        self.operation = operation
        self.exit_code = self.default_exit_code if exit_code is None else exit_code

    def __str__(self) -> str:
        message = super().__str__()
        if self.operation:
            return f"{self.operation}: {message}"
        return message


class ConfigurationError(LifecycleError):
    """Raised for invalid arguments or conflicting inputs."""

    default_code = "invalid_configuration"
    default_exit_code = EXIT_INVALID_ARGS


class MalformedInputError(LifecycleError):
    """Raised when a group or metadata document cannot be read."""

    default_code = "malformed_input"
    default_exit_code = EXIT_FAILED_BUILD


class LayerStoreError(LifecycleError):
    """Raised when a layer cannot be archived or extracted."""

    default_code = "layer_store_error"
    default_exit_code = EXIT_FAILED_BUILD


class AnalyzeError(LifecycleError):
    """Raised when cached layers cannot be restored."""

    default_code = "analyze_error"
    default_exit_code = EXIT_FAILED_BUILD


class ExportError(LifecycleError):
    """Raised when an image cannot be assembled."""

    default_code = "export_error"
    default_exit_code = EXIT_FAILED_BUILD


class ImageSourceError(LifecycleError):
    """Raised for fatal image transport errors."""

    default_code = "image_source_error"


class ImageAccessError(ImageSourceError):
    """Raised when an image is unavailable; analyze treats this as a cold cache."""

    default_code = "image_access_denied"


class ImageUnauthorizedError(ImageAccessError):
    """Raised when the image store denies access."""

    default_code = "unauthorized"


class ImageNotFoundError(ImageAccessError):
    """Raised when the image does not exist."""

    default_code = "image_not_found"


class ImageSaveError(ImageSourceError):
    """Raised when an image cannot be pushed or loaded."""

    default_code = "image_save_error"
    default_exit_code = EXIT_FAILED_SAVE


__all__ = [
    "EXIT_FAILED",
    "EXIT_FAILED_BUILD",
    "EXIT_FAILED_SAVE",
    "EXIT_INVALID_ARGS",
    "EXIT_SUCCESS",
    "AnalyzeError",
    "ConfigurationError",
    "ExportError",
    "ImageAccessError",
    "ImageNotFoundError",
    "ImageSaveError",
    "ImageSourceError",
    "ImageUnauthorizedError",
    "LayerStoreError",
    "LifecycleError",
    "MalformedInputError",
]
