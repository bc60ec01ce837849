import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from mpesa_gateway import models  # noqa: F401  registers tables on Base
from mpesa_gateway.config import get_settings
from mpesa_gateway.database import Base, engine
from mpesa_gateway.errors import GatewayError, InternalError, ValidationError
from mpesa_gateway.logging_config import configure_logging
from mpesa_gateway.routes import SERVICE_NAME, router

configure_logging(get_settings())
logger = structlog.get_logger(__name__)

app = FastAPI(title=SERVICE_NAME)

app.include_router(router)

Base.metadata.create_all(bind=engine)


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    return JSONResponse(exc.to_dict(), status_code=exc.http_status)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = {}
    for error in exc.errors():
        # json_invalid errors are located by character offset, report them against the body
        parts = [part for part in error["loc"] if part != "body" and not isinstance(part, int)]
        field = ".".join(parts) or "body"
        errors.setdefault(field, []).append(error["msg"])
    error = ValidationError(errors)
    return JSONResponse(error.to_dict(), status_code=error.http_status)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled_exception", path=request.url.path)
    error = InternalError()
    return JSONResponse(error.to_dict(), status_code=error.http_status)
