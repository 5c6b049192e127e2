"""
Domain errors raised by the service layer.

They are HTTPException subclasses so FastAPI renders them as {"detail": ...}
without extra handlers, while scripts and tests can catch them by class.
"""
from fastapi import HTTPException, status


class ValidationFailed(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class NotFound(HTTPException):
    """Absent, or present but not owned / not in the required state."""

    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class Conflict(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)
