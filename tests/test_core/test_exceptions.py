import pytest
from fastapi import HTTPException

from core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    DatabaseConnectionError,
    DuplicateEntryError,
    FeatureNotConfiguredError,
    InvalidReferenceError,
    NotFoundError,
    PayloadTooLargeError,
    RangeNotSatisfiableError,
    ServiceUnavailableError,
    TubeStreamError,
    UnsupportedMediaTypeError,
    ValidationError,
    error_payload,
    public_message,
    to_http_exception,
)


class TestCustomExceptions:
    """Test custom exception classes."""

    def test_base_error_defaults(self):
        """Test TubeStreamError creation and properties."""
        error = TubeStreamError("Something broke")
        assert str(error) == "Something broke"
        assert error.error_code == "TUBESTREAM_ERROR"
        assert error.details == {}
        assert error.status_code == 500

    def test_validation_error(self):
        """Test ValidationError creation and properties."""
        error = ValidationError("duration", "", "Duration is required")
        assert str(error) == "Duration is required"
        assert error.status_code == 400
        assert error.error_code == "VALIDATION_ERROR"
        assert error.details["field"] == "duration"

    def test_invalid_reference_error(self):
        error = InvalidReferenceError("video", "v-1")
        assert error.status_code == 400
        assert error.details == {"entity": "video", "id": "v-1"}

    def test_duplicate_entry_error(self):
        error = DuplicateEntryError("Channel handle is already taken", "username")
        assert error.status_code == 400
        assert error.details == {"field": "username"}
        assert DuplicateEntryError("dup").details == {}

    def test_authentication_error(self):
        """Test AuthenticationError creation and properties."""
        error = AuthenticationError()
        assert str(error) == "Unauthorized"
        assert error.status_code == 401
        assert error.error_code == "AUTHENTICATION_ERROR"

    def test_authorization_error(self):
        error = AuthorizationError("Not allowed to edit another user's channel")
        assert error.status_code == 403
        assert error.error_code == "FORBIDDEN"

    def test_not_found_error(self):
        """Test NotFoundError creation and properties."""
        error = NotFoundError("Video", "v-1")
        assert str(error) == "Video not found"
        assert error.status_code == 404
        assert NotFoundError("Subscription").details == {}

    def test_payload_too_large_error(self):
        error = PayloadTooLargeError(600 * 1024 * 1024, 500 * 1024 * 1024)
        assert error.status_code == 413
        assert error.message == "File too large. Maximum size is 500MB"

    def test_range_not_satisfiable_error(self):
        error = RangeNotSatisfiableError("bytes=100-", 16)
        assert error.status_code == 416
        assert error.details == {"range": "bytes=100-", "size": 16}
        assert error.headers == {"Content-Range": "bytes */16"}
        assert NotFoundError("Video").headers == {}

    def test_unsupported_media_type_error(self):
        error = UnsupportedMediaTypeError("text/plain", {"video/webm", "video/mp4"})
        assert error.status_code == 415
        assert error.details["allowed"] == ["video/mp4", "video/webm"]

    def test_infrastructure_errors(self):
        assert FeatureNotConfiguredError("oauth", "OAuth not configured").status_code == 501
        unavailable = ServiceUnavailableError("object_storage", "Video storage not configured")
        assert unavailable.status_code == 503
        assert str(unavailable) == (
            "Service 'object_storage' is unavailable: Video storage not configured"
        )
        assert DatabaseConnectionError("get_user", "OperationalError").status_code == 500


class TestPublicMessage:
    """Test which messages reach clients."""

    def test_client_errors_keep_message(self):
        assert public_message(NotFoundError("Video")) == "Video not found"

    def test_database_errors_are_opaque(self):
        error = DatabaseConnectionError("get_user", "connection refused on 10.0.0.5")
        assert public_message(error) == "An unexpected error occurred"

    @pytest.mark.parametrize(
        "error",
        [
            FeatureNotConfiguredError("oauth", "OAuth not configured"),
            ServiceUnavailableError("object_storage", "Video storage not configured"),
        ],
    )
    def test_configuration_errors_keep_message(self, error):
        assert public_message(error) == error.message


class TestErrorPayload:
    """Test the JSON error envelope."""

    def test_envelope_shape(self):
        payload = error_payload("NotFoundError", "NOT_FOUND", "Video not found", "corr-1")

        assert payload == {
            "error": {
                "type": "NotFoundError",
                "code": "NOT_FOUND",
                "message": "Video not found",
                "correlation_id": "corr-1",
            }
        }


class TestToHttpException:
    """Test to_http_exception function."""

    def test_convert_not_found_error(self):
        """Test converting NotFoundError to HTTPException."""
        http_error = to_http_exception(NotFoundError("Channel", "c-1"))

        assert isinstance(http_error, HTTPException)
        assert http_error.status_code == 404
        assert http_error.detail == {
            "error_code": "NOT_FOUND",
            "message": "Channel not found",
            "details": {"entity": "Channel", "id": "c-1"},
        }

    def test_convert_database_error_hides_details(self):
        """Test that server-side failures are converted without their details."""
        http_error = to_http_exception(DatabaseConnectionError("create_video", "timeout"))

        assert http_error.status_code == 500
        assert http_error.detail["message"] == "An unexpected error occurred"
        assert http_error.detail["details"] == {}

    def test_unknown_code_maps_to_500(self):
        http_error = to_http_exception(TubeStreamError("odd", "SOMETHING_NEW"))

        assert http_error.status_code == 500

    def test_convert_range_error_keeps_content_range(self):
        http_error = to_http_exception(RangeNotSatisfiableError("bytes=100-", 16))

        assert http_error.status_code == 416
        assert http_error.headers == {"Content-Range": "bytes */16"}
        assert to_http_exception(NotFoundError("Video")).headers is None
