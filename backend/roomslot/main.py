import logging
from typing import Awaitable, Callable

from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse

from .config import get_settings
from .domain.errors import InconsistentStateError, StoreError
from .routers import auth, bookings, resources, slots
from .utils.request_id import REQUEST_ID_HEADER, resolve_request_id, set_request_id

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Room Slot Booking API")


async def request_id_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
    set_request_id(request_id)
    try:
        response = await call_next(request)
    finally:
        set_request_id(None)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


async def store_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("store failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": "store unavailable"})


async def inconsistent_state_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("inconsistent booking state on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": "booking state error"})


app.middleware("http")(request_id_middleware)
app.add_exception_handler(StoreError, store_error_handler)
app.add_exception_handler(InconsistentStateError, inconsistent_state_handler)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(auth.router)
app.include_router(resources.router)
app.include_router(slots.router)
app.include_router(bookings.router)
