import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from .config import get_settings
from .domain.errors import InternalError, InvalidQueryError
from .routers import reservations, slots
from .utils.logging_config import configure_logging
from .utils.request_id import REQUEST_ID_HEADER, request_id_scope, resolve_request_id

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_logging(settings.log_level)
    if settings.create_tables:
        from .database import init_db

        await init_db()
        logger.info("database tables ensured")
    yield


async def request_id_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
    with request_id_scope(request_id):
        response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


async def query_validation_handler(request: Request, exc: RequestValidationError) -> Response:
    query_errors = [err for err in exc.errors() if err.get("loc", ("",))[0] == "query"]
    if not query_errors:
        return await request_validation_exception_handler(request, exc)
    field = ".".join(str(part) for part in query_errors[0]["loc"][1:]) or None
    error = InvalidQueryError("invalid query parameters", field=field)
    content = {"detail": {**error.to_dict(), "errors": jsonable_encoder(query_errors)}}
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=content)


async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": InternalError("internal server error").to_dict()},
    )


def create_app() -> FastAPI:
    application = FastAPI(title="Slot Booking API", lifespan=lifespan)
    application.middleware("http")(request_id_middleware)
    application.add_exception_handler(RequestValidationError, query_validation_handler)  # type: ignore[arg-type]
    application.add_exception_handler(Exception, internal_error_handler)

    @application.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    application.include_router(slots.router)
    application.include_router(reservations.router)
    return application


app = create_app()
