"""Tests for waypoint.errors module."""

import pytest

from waypoint.errors import (
    Err,
    MigrationPartialFailure,
    NotFoundError,
    Ok,
    StorageError,
    UnwrapError,
    ValidationError,
    WaypointError,
    err,
    format_error,
    ok,
)


class TestResult:
    """Tests for Ok/Err."""

    def test_ok_unwraps_value(self):
        """ok() wraps a value that unwrap() returns."""
        result = ok(42)

        assert isinstance(result, Ok)
        assert result.is_ok()
        assert not result.is_err()
        assert result.unwrap() == 42

    def test_err_unwraps_error(self):
        """err() wraps an error that unwrap_err() returns."""
        error = NotFoundError(code="CHECKPOINT_NOT_FOUND", message="gone")
        result = err(error)

        assert isinstance(result, Err)
        assert result.is_err()
        assert result.unwrap_err() is error

    def test_unwrap_on_err_raises_with_error(self):
        """unwrap() on Err raises UnwrapError carrying the error."""
        error = StorageError(code="RECORD_CORRUPT", message="bad json")

        with pytest.raises(UnwrapError) as excinfo:
            err(error).unwrap()

        assert excinfo.value.error is error

    def test_unwrap_err_on_ok_raises(self):
        """unwrap_err() on Ok raises UnwrapError."""
        with pytest.raises(UnwrapError):
            ok("value").unwrap_err()

    def test_unwrap_or(self):
        """unwrap_or() returns the default only for Err."""
        assert ok(1).unwrap_or(0) == 1
        assert err(ValidationError(code="X", message="x")).unwrap_or(0) == 0

    def test_map(self):
        """map() transforms Ok values and passes Err through."""
        assert ok(2).map(lambda v: v * 3).unwrap() == 6

        failed = err(ValidationError(code="X", message="x"))
        assert failed.map(lambda v: v * 3) is failed


class TestErrorValues:
    """Tests for the error value types."""

    def test_errors_share_shape(self):
        """Every error carries code, message and context."""
        error = ValidationError(code="VALIDATION_FAILED", message="no name", context={"errors": ["x"]})

        assert isinstance(error, WaypointError)
        assert error.code == "VALIDATION_FAILED"
        assert error.context == {"errors": ["x"]}
        assert str(error) == "no name"

    def test_context_defaults_to_empty(self):
        """context is optional."""
        assert NotFoundError(code="X", message="y").context == {}

    def test_errors_are_immutable(self):
        """Error values are frozen."""
        error = StorageError(code="X", message="y")

        with pytest.raises(AttributeError):
            error.code = "Z"


class TestFormatError:
    """Tests for format_error()."""

    @pytest.mark.parametrize(
        "error_type,prefix",
        [
            (ValidationError, "Invalid request"),
            (NotFoundError, "Not found"),
            (StorageError, "Storage error"),
            (MigrationPartialFailure, "Skipped"),
            (WaypointError, "Error"),
        ],
    )
    def test_prefixes_category(self, error_type, prefix):
        """format_error() names the category before the message."""
        assert format_error(error_type(code="X", message="details")) == f"{prefix}: details"
