import logging
from collections.abc import Awaitable, Callable

from fastapi import Request, status
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


def build_error_envelope_middleware(
    *, expose_errors: bool = False
) -> Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]:
    """
    Return the outermost error boundary for a service.

    Unhandled exceptions are logged with their traceback and answered with a
    generic 500 envelope.  ``expose_errors`` adds the exception text to the
    envelope and must stay off in production.
    """

    async def error_envelope_middleware(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        try:
            return await call_next(request)
        except StarletteHTTPException as exc:
            return JSONResponse(
                status_code=exc.status_code,
                content={
                    "error": {
                        "code": exc.detail if isinstance(exc.detail, str) else "http_error",
                        "message": exc.detail if isinstance(exc.detail, str) else str(exc.detail),
                    },
                    "request_id": getattr(request.state, "request_id", None),
                },
                headers=getattr(exc, "headers", None),
            )
        except Exception as exc:
            logger.exception(
                "Unhandled exception on %s %s", request.method, request.url.path
            )
            message = str(exc) if expose_errors else "Internal server error"
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error": {"code": "internal_error", "message": message},
                    "request_id": getattr(request.state, "request_id", None),
                },
            )

    return error_envelope_middleware
