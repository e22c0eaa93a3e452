# background.py
import asyncio
import logging
from typing import List

from services import courier_service
from services.couriers import get_courier_service
from settings import settings
from database import AsyncSessionLocal

async def refresh_carrier_token():
    """Keeps the cached carrier token fresh between requests."""
    token = await get_courier_service().tokens.get_valid_token()
    logging.info(f"Carrier token valid until {token.expires_at.isoformat()}")

async def sync_label_tracking():
    """Opens its own session; request sessions are not available here."""
    async with AsyncSessionLocal() as session:
        await courier_service.sync_tracking(session, get_courier_service())

async def run_periodic_task(interval_minutes: int, task_function, task_name: str):
    """Runs a function every `interval_minutes` minutes."""
    logging.info(f"Periodic task '{task_name}' started, running every {interval_minutes} minutes.")
    while True:
        try:
            await task_function()
        except Exception as e:
            logging.error(f"Error in periodic task '{task_name}': {e}", exc_info=True)

        await asyncio.sleep(interval_minutes * 60)

def start_background_tasks() -> List[asyncio.Task]:
    """
    Creates and starts the periodic background tasks.
    main.py cancels the returned tasks on shutdown.
    """
    logging.info("Starting background tasks...")
    return [
        asyncio.create_task(run_periodic_task(
            interval_minutes=settings.TOKEN_REFRESH_INTERVAL_MINUTES,
            task_function=refresh_carrier_token,
            task_name="Carrier token refresh",
        )),
        asyncio.create_task(run_periodic_task(
            interval_minutes=settings.TRACKING_SYNC_INTERVAL_MINUTES,
            task_function=sync_label_tracking,
            task_name="Label tracking sync",
        )),
    ]
