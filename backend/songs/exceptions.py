"""
Domain errors and the custom exception handler for DRF

Services raise MusicGridError subclasses; the handler below turns them
into a consistent response format across the API.
"""
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from django.db import IntegrityError
import logging

logger = logging.getLogger(__name__)


class MusicGridError(Exception):
    """Base class for errors reported to the caller with a short reason."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'Request could not be completed.'

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInput(MusicGridError):
    """Bad input shape or length. Nothing was written."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'Invalid input.'


class NotFound(MusicGridError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = 'Not found.'


class PermissionDenied(MusicGridError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = 'You do not have permission to perform this action.'


class Unauthenticated(MusicGridError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = 'Authentication required.'


class StorageError(MusicGridError):
    """
    Transaction or connection failure.

    The message is always generic; the real cause is logged server-side.
    """
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = 'A storage error occurred. Please try again.'


def custom_exception_handler(exc, context):
    """
    Custom exception handler that:
    1. Logs all exceptions
    2. Converts domain and Django exceptions to DRF responses
    3. Provides consistent error format
    """

    if isinstance(exc, MusicGridError):
        if isinstance(exc, StorageError):
            logger.warning(f"StorageError surfaced to client: {exc.__cause__!r}")
        return Response({'error': exc.message}, status=exc.status_code)

    # Call DRF's default exception handler first
    response = exception_handler(exc, context)

    # If DRF handled it, enhance the response
    if response is not None:
        # Ensure consistent format
        if not isinstance(response.data, dict) or 'error' not in response.data:
            response.data = {
                'error': str(exc),
                'details': response.data
            }
        return response

    # Handle exceptions that DRF doesn't handle
    if isinstance(exc, IntegrityError):
        logger.warning(f"IntegrityError: {exc}")
        return Response(
            {'error': 'Data integrity error. This may be a duplicate entry.'},
            status=status.HTTP_409_CONFLICT
        )

    if isinstance(exc, ValueError):
        return Response(
            {'error': str(exc)},
            status=status.HTTP_400_BAD_REQUEST
        )

    # Log unexpected exceptions
    logger.exception(f"Unhandled exception: {exc}")

    # Return generic error for unexpected exceptions
    return Response(
        {'error': 'An unexpected error occurred.'},
        status=status.HTTP_500_INTERNAL_SERVER_ERROR
    )
