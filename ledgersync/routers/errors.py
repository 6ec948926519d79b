"""Translate engine errors into HTTP errors."""

from fastapi import HTTPException, status

from ledgersync.exceptions import (
    AuthError,
    ConnectionNotFound,
    ConnectionNotSyncable,
    MatchConflict,
    ProviderNotFound,
    ProviderUnavailable,
    RateLimited,
    SyncError,
)


def http_error(exc: SyncError) -> HTTPException:
    if isinstance(exc, (ConnectionNotFound, ProviderNotFound)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)
    if isinstance(exc, (ConnectionNotSyncable, MatchConflict)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.message)
    if isinstance(exc, RateLimited):
        headers = {"Retry-After": str(int(exc.retry_after))} if exc.retry_after else None
        return HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=exc.message, headers=headers)
    if isinstance(exc, AuthError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
    if isinstance(exc, ProviderUnavailable):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.message)
