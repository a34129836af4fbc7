"""Exception handlers shared by every router."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .core.exceptions import DomainException

logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
        """
        Render a domain error that escaped a route (e.g. raised by a dependency)
        in the same shape routes produce via ``to_http_exception``.
        """
        http_exc = exc.to_http_exception()
        if http_exc.status_code >= 500:
            logger.error(
                "Unhandled domain error",
                extra={"path": request.url.path, "code": exc.code, "error": exc.message},
            )
        return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})
