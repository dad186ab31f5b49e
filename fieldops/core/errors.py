"""
Small helpers shared by services that turn failures into response text.

Services raise ``fastapi.HTTPException`` for client errors. Operations whose
contract is "errors returned as message strings" catch the exception and use
``error_message`` to build the ``{"message": ...}`` envelope.
"""

from fastapi import HTTPException


def error_message(exc: Exception) -> str:
    """Return the client-facing text of an exception."""
    if isinstance(exc, HTTPException):
        return str(exc.detail)
    return str(exc)


def bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=400, detail=detail)


def not_found(detail: str) -> HTTPException:
    return HTTPException(status_code=404, detail=detail)
