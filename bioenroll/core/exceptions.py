from typing import Any, Dict, Optional


class EnrollmentError(Exception):
    """Base class for errors surfaced by the enrollment service."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class EnrollmentValidationError(EnrollmentError):
    status_code = 400


class FingerAlreadyEnrolledError(EnrollmentError):
    status_code = 400


class EnrollmentNotFoundError(EnrollmentError):
    status_code = 404


class DeviceBusyError(EnrollmentError):
    status_code = 409


class TemplatePersistenceError(EnrollmentError):
    status_code = 500
