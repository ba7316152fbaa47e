# errors.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class ApiError(Exception):
    message: str
    status: int = 400
    code: str = "bad_request"
    details: Optional[Dict[str, Any]] = None

    def __str__(self) -> str:
        return self.message


@dataclass
class ValidationError(ApiError):
    status: int = 400
    code: str = "validation_error"


@dataclass
class NotFound(ApiError):
    status: int = 404
    code: str = "not_found"


@dataclass
class Conflict(ApiError):
    status: int = 409
    code: str = "conflict"


@dataclass
class ServiceUnavailable(ApiError):
    """The store did not answer within the configured query timeout."""

    status: int = 503
    code: str = "service_unavailable"
