"""
Service error -> HTTP translation shared by the admin routers
"""
from fastapi import HTTPException, status

from navmenu.exceptions import (
    CycleDetected, NotFound, UnknownResourceType, ValidationError,
)


def http_error(e: ValueError) -> HTTPException:
    if isinstance(e, (NotFound, UnknownResourceType)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, CycleDetected):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, ValidationError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": e.message, "errors": e.errors},
        )
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
