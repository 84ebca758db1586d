"""Error response schema.

Every failed request gets the same envelope:
{"timestamp", "status", "error", "message", "path", "details": [...]}.
Exception handlers in handlers.py build it from application errors.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Error envelope returned by all error responses.

    ``details`` is always present; it is an empty list when the error has
    no field-level issues.
    """

    model_config = {"frozen": True}

    timestamp: datetime
    status: int
    error: str
    message: str
    path: str
    details: list[str] = Field(default_factory=list)
