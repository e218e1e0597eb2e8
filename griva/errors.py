from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class GrivaError(Exception):
    """Base class for errors raised by mutating operations (posts, communities, interactions)."""
    status_code = 400
    default_message = "Bad request"

    def __init__(self, message: str = None):
        super().__init__(message or self.default_message)


class NotAuthenticatedError(GrivaError):
    status_code = 401
    default_message = "Not authenticated"


class NotAuthorizedError(GrivaError):
    status_code = 403
    default_message = "Not authorized"


class NotFoundError(GrivaError):
    status_code = 404
    default_message = "Not found"


class FetchError(Exception):
    """A source fetch failed (timeout, HTTP error, unparseable feed)."""


def register_error_handlers(app: FastAPI) -> None:
    """Map GrivaError subclasses to JSON error responses with their status code."""

    @app.exception_handler(GrivaError)
    async def _handle_griva_error(request: Request, exc: GrivaError):
        return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})
