"""
Domain error taxonomy.

Services raise these; the HTTP boundary in chirp.main maps each one to its
status code and the normalised error envelope.
"""
from fastapi import status


class ChirpError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str = "Server Error") -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(ChirpError):
    status_code = status.HTTP_404_NOT_FOUND


class ForbiddenError(ChirpError):
    status_code = status.HTTP_403_FORBIDDEN


class ConflictError(ChirpError):
    status_code = status.HTTP_409_CONFLICT


class BadRequestError(ChirpError):
    status_code = status.HTTP_400_BAD_REQUEST


class UnauthorizedError(ChirpError):
    status_code = status.HTTP_401_UNAUTHORIZED
