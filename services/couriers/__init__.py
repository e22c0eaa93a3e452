# services/couriers/__init__.py

import logging
from typing import Dict

from settings import settings
from .common import Credentials
from .errors import NotFoundError
from .melhor_envio import MelhorEnvioCourierService
from .token_store import CredentialStore

# Shared dictionary holding the single instance of each account's service
_courier_instances: Dict[str, MelhorEnvioCourierService] = {}

def get_courier_service(account_key: str = "default", session_factory=None) -> MelhorEnvioCourierService:
    """
    Factory function.
    Creates or returns the single service instance of a carrier account, so
    every request shares one token manager and one connection pool.
    Only accounts listed in MELHOR_ENVIO_ACCOUNT_KEYS are served.
    """
    if account_key not in _courier_instances:
        if account_key not in settings.MELHOR_ENVIO_ACCOUNT_KEYS:
            raise NotFoundError(f"Unknown carrier account: {account_key}", details={"account_key": account_key})
        logging.info(f"Creating a new carrier service instance for account: {account_key}")
        if session_factory is None:
            from database import AsyncSessionLocal
            session_factory = AsyncSessionLocal

        credentials = Credentials(
            client_id=settings.MELHOR_ENVIO_CLIENT_ID,
            client_secret=settings.MELHOR_ENVIO_CLIENT_SECRET,
            refresh_token=settings.MELHOR_ENVIO_REFRESH_TOKEN,
        )
        store = CredentialStore(session_factory, account_key, credentials)
        _courier_instances[account_key] = MelhorEnvioCourierService(account_key, store, settings)

    return _courier_instances[account_key]

async def close_courier_services():
    for service in _courier_instances.values():
        await service.aclose()
    _courier_instances.clear()
