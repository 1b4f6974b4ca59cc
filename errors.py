"""
Error types raised by the donation and request workflow.

They are HTTPExceptions so a route can simply let them propagate; FastAPI
renders them as {"detail": "..."} with the matching status code.
"""
from fastapi import HTTPException, status

GENERIC_ERROR_MESSAGE = "Server error, please try again later."


class ValidationError(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class AuthorizationError(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class NotFoundError(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class ServerError(HTTPException):
    def __init__(self, detail: str = GENERIC_ERROR_MESSAGE):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail
        )
