from __future__ import annotations


class RelayError(Exception):
    """Base error rendered as `{"success": false, "error": code, "message": ...}`."""

    status_code = 500
    code = "Internal"
    default_message = "Something went wrong!"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self) -> dict:
        return {"success": False, "error": self.code, "message": self.message}


class InvalidInputError(RelayError):
    status_code = 400
    code = "InvalidInput"
    default_message = "Invalid input."


class UnauthorizedError(RelayError):
    status_code = 401
    code = "Unauthorized"
    default_message = "Unauthorized."


class PayloadTooLargeError(RelayError):
    status_code = 413
    code = "PayloadTooLarge"
    default_message = "Uploaded file is too large."


class UnsupportedMediaError(RelayError):
    status_code = 415
    code = "UnsupportedMedia"
    default_message = "Only image files are allowed!"


class AnalysisError(RelayError):
    status_code = 500
    code = "AnalysisError"
    default_message = "Document analysis failed."


class AnalysisTimeoutError(AnalysisError):
    status_code = 504
    code = "Timeout"
    default_message = "Document analysis timed out."


class InternalError(RelayError):
    pass
