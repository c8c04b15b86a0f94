"""
FastAPI application for the procurement RFx portal.
"""
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from procurement.api import purchase_orders, rfx_portal, suppliers
from procurement.core.config import settings
from procurement.core.errors import ProcurementError
from procurement.core.logging import get_logger, setup_logging
from procurement.db.session import init_db

logger = get_logger(__name__)


def error_response(status_code: int, message: str, headers: dict = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"statusCode": status_code, "message": message},
        headers=headers,
    )


async def procurement_error_handler(request: Request, exc: ProcurementError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return error_response(exc.status_code, message, getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    else:
        message = "Invalid request"
    return error_response(status.HTTP_400_BAD_REQUEST, message)


async def integrity_error_handler(request: Request, exc: IntegrityError):
    detail = str(exc.orig).lower()
    logger.warning(f"{request.method} {request.url.path} integrity error: {exc.orig}")
    if "unique" in detail or "duplicate" in detail:
        return error_response(status.HTTP_409_CONFLICT, "Conflict: Duplicate entry")
    if "foreign key" in detail:
        return error_response(status.HTTP_400_BAD_REQUEST, "Invalid reference: Related record not found")
    return error_response(status.HTTP_400_BAD_REQUEST, "Check constraint failed")


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"{request.method} {request.url.path} raised an unexpected error")
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    init_db()
    logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} started")
    yield


def create_app(run_startup: bool = True) -> FastAPI:
    application = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        lifespan=lifespan if run_startup else None,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.add_exception_handler(ProcurementError, procurement_error_handler)
    application.add_exception_handler(StarletteHTTPException, http_exception_handler)
    application.add_exception_handler(RequestValidationError, validation_exception_handler)
    application.add_exception_handler(IntegrityError, integrity_error_handler)
    application.add_exception_handler(Exception, unhandled_exception_handler)

    application.include_router(rfx_portal.router)
    application.include_router(suppliers.router)
    application.include_router(purchase_orders.router)

    @application.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok", "app": settings.APP_NAME, "version": settings.APP_VERSION}

    return application


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
