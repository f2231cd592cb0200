"""API Enum Definitions"""

from enum import StrEnum


class ResponseStatus(StrEnum):
    """API response status"""

    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"
    ERROR = "error"
