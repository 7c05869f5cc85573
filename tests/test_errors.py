"""Tests for the error hierarchy and exit codes."""

from packs_lifecycle.errors import (
    EXIT_FAILED,
    EXIT_FAILED_BUILD,
    EXIT_FAILED_SAVE,
    EXIT_INVALID_ARGS,
    ConfigurationError,
    ExportError,
    ImageAccessError,
    ImageNotFoundError,
    ImageSaveError,
    ImageSourceError,
    ImageUnauthorizedError,
    LayerStoreError,
    LifecycleError,
    MalformedInputError,
)


class TestLifecycleError:
    """Test the base error."""

    def test_defaults(self) -> None:
        """Base error should carry a default code and generic exit code."""
        err = LifecycleError("boom")
        assert err.code == "lifecycle_error"
        assert err.exit_code == EXIT_FAILED
        assert err.operation is None
        assert str(err) == "boom"

    def test_operation_prefix(self) -> None:
        """The operation should prefix the message."""
        err = LifecycleError("no such file", operation="read group")
        assert str(err) == "read group: no such file"

    def test_explicit_code_and_exit_code(self) -> None:
        """Explicit code and exit code should override the defaults."""
        err = ExportError("bad", code="custom", exit_code=42)
        assert err.code == "custom"
        assert err.exit_code == 42


class TestExitCodes:
    """Test exit codes of each error kind."""

    def test_configuration_error(self) -> None:
        """Invalid arguments exit with 3."""
        assert ConfigurationError("x").exit_code == EXIT_INVALID_ARGS

    def test_build_errors(self) -> None:
        """Input, layer and export failures exit with 7."""
        for cls in (MalformedInputError, LayerStoreError, ExportError):
            assert cls("x").exit_code == EXIT_FAILED_BUILD

    def test_save_error(self) -> None:
        """Save failures exit with 10."""
        assert ImageSaveError("x").exit_code == EXIT_FAILED_SAVE

    def test_source_error(self) -> None:
        """Transport failures exit with 1."""
        assert ImageSourceError("x").exit_code == EXIT_FAILED


class TestHierarchy:
    """Test which errors are skippable."""

    def test_access_errors_are_skippable(self) -> None:
        """Unauthorized and not-found are access errors."""
        assert issubclass(ImageUnauthorizedError, ImageAccessError)
        assert issubclass(ImageNotFoundError, ImageAccessError)
        assert ImageUnauthorizedError("x").code == "unauthorized"
        assert ImageNotFoundError("x").code == "image_not_found"

    def test_save_error_is_not_skippable(self) -> None:
        """Save errors are source errors but not access errors."""
        assert issubclass(ImageSaveError, ImageSourceError)
        assert not issubclass(ImageSaveError, ImageAccessError)
