"""Custom exceptions for better error handling patterns"""

from typing import Optional


class EnhancementError(Exception):
    """Base exception for enhancement errors"""


class SubmissionError(EnhancementError):
    """Exception for failures before a job is accepted by the worker"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ValidationError(SubmissionError):
    """Exception for input validation errors"""


class UploadError(SubmissionError):
    """Exception for device-local image upload errors"""


class PollTransportError(EnhancementError):
    """Exception for a single failed status query"""


class StoreError(EnhancementError):
    """Exception for job-record store errors"""


class ServiceUnavailableError(EnhancementError):
    """Exception for service unavailability"""
