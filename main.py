# main.py
import asyncio
import logging
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from database import create_tables
from routes import oauth, shipping
from background import start_background_tasks
from services.couriers import close_courier_services
from services.couriers.errors import (
    AuthError,
    CarrierRequestError,
    CarrierUnavailableError,
    DuplicatePurchaseError,
    InvalidStateTransitionError,
    NotFoundError,
    ShippingError,
    ValidationError,
)
from settings import settings

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Shipping carrier integration")

# Include the routes from the other files
app.include_router(shipping.router)
app.include_router(oauth.router)

# Most specific classes first; the first match wins.
ERROR_STATUS = [
    (ValidationError, 400),
    (NotFoundError, 404),
    (DuplicatePurchaseError, 409),
    (InvalidStateTransitionError, 409),
    (CarrierRequestError, 422),
    (AuthError, 502),
    (CarrierUnavailableError, 503),
]

def status_for(error: ShippingError) -> int:
    for error_class, status_code in ERROR_STATUS:
        if isinstance(error, error_class):
            return status_code
    return 500

@app.exception_handler(ShippingError)
async def shipping_error_handler(request: Request, exc: ShippingError):
    status_code = status_for(exc)
    if status_code >= 500:
        logging.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logging.warning(f"{request.method} {request.url.path} rejected: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.message, "details": jsonable_encoder(exc.details)},
    )


@app.on_event("startup")
async def startup_event():
    """
    Create the tables and start the background tasks when the application starts.
    """
    await create_tables()
    app.state.background_tasks = start_background_tasks() if settings.BACKGROUND_TASKS_ENABLED else []


@app.on_event("shutdown")
async def shutdown_event():
    tasks = getattr(app.state, "background_tasks", [])
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    await close_courier_services()
