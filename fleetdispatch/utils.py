import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .errors import FleetError
from .settings import settings

log = logging.getLogger("fleet.api")

def add_cors(app: FastAPI) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

def error_body(message: str, **extra) -> dict:
    return {"status": "error", "message": message, **extra}

def add_error_handlers(app: FastAPI) -> None:
    """Map service errors to HTTP responses so storage faults never leak to clients."""

    @app.exception_handler(FleetError)
    async def fleet_error(request: Request, exc: FleetError):
        if exc.status_code >= 500:
            log.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.message))

    @app.exception_handler(RequestValidationError)
    async def request_invalid(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content=error_body("Invalid request.", errors=jsonable_encoder(exc.errors())),
        )
