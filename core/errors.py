"""
Error taxonomy shared by the pipeline and the HTTP surface.
"""

from typing import Any, Dict, Optional


class PipelineError(Exception):
    """Base class; carries the HTTP status the API answers with."""

    status_code = 500

    def __init__(self, message: str, **payload: Any):
        super().__init__(message)
        self.message = message
        self.payload: Dict[str, Any] = payload

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, **self.payload}


class ValidationError(PipelineError):
    status_code = 400


class ConflictError(PipelineError):
    status_code = 409

    def __init__(self, message: str, existing_id: str, content_hash: Optional[str] = None):
        super().__init__(message, existing_id=existing_id, content_hash=content_hash)
        self.existing_id = existing_id
        self.content_hash = content_hash


class NotFoundError(PipelineError):
    status_code = 404


class UnauthorizedError(PipelineError):
    status_code = 401


class DownstreamError(PipelineError):
    """Store or external source failure."""
    status_code = 500


class InternalError(PipelineError):
    status_code = 500
