# services/couriers/melhor_envio.py

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx

from settings import Settings
from .client import CarrierClient, RetryPolicy
from .common import AccessToken
from .token_manager import TokenManager
from .token_store import CredentialStore


class MelhorEnvioCourierService:
    """Melhor Envio API v2: one instance per carrier account."""

    def __init__(
        self,
        account_key: str,
        store: CredentialStore,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep=None,
    ):
        self.account_key = account_key
        self.http = httpx.AsyncClient(
            timeout=settings.CARRIER_TIMEOUT_SECONDS,
            transport=transport,
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
                "User-Agent": settings.MELHOR_ENVIO_USER_AGENT,
            },
        )
        self.tokens = TokenManager(
            self.http,
            oauth_url=f"{settings.melhor_envio_host}/oauth",
            store=store,
            safety_margin_seconds=settings.TOKEN_SAFETY_MARGIN_SECONDS,
            redirect_uri=settings.MELHOR_ENVIO_REDIRECT_URI,
        )
        if settings.MELHOR_ENVIO_TOKEN:
            # Static personal tokens have no reported expiry; treat them as short-lived
            # so the refresh flow takes over once one is configured.
            self.tokens.seed(AccessToken(
                value=settings.MELHOR_ENVIO_TOKEN.removeprefix("Bearer "),
                expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
            ))

        policy = RetryPolicy(
            max_attempts=settings.CARRIER_MAX_ATTEMPTS,
            base_delay=settings.CARRIER_BACKOFF_BASE_SECONDS,
            max_delay=settings.CARRIER_BACKOFF_MAX_SECONDS,
            retry_after_cap=settings.CARRIER_RETRY_AFTER_MAX_SECONDS,
        )
        client_kwargs = {"policy": policy}
        if sleep is not None:
            client_kwargs["sleep"] = sleep
        self.client = CarrierClient(self.http, settings.melhor_envio_api_url, self.tokens, **client_kwargs)

    async def aclose(self):
        await self.http.aclose()

    # --- Account ---

    async def company(self) -> Any:
        return await self.client.get("/me/company")

    async def balance(self) -> Any:
        return await self.client.get("/me/balance")

    # --- Quotes ---

    async def calculate(self, payload: Dict[str, Any]) -> Any:
        return await self.client.post("/me/shipment/calculate", json=payload)

    # --- Labels ---

    async def add_to_cart(self, item: Dict[str, Any]) -> Dict[str, Any]:
        return await self.client.post("/me/cart", json=item)

    async def remove_from_cart(self, carrier_order_id: str) -> Any:
        return await self.client.send("DELETE", f"/me/cart/{carrier_order_id}")

    async def checkout(self, carrier_order_ids: List[str]) -> Any:
        return await self.client.post("/me/shipment/checkout", json={"orders": carrier_order_ids})

    async def generate(self, carrier_order_ids: List[str]) -> Any:
        return await self.client.post("/me/shipment/generate", json={"orders": carrier_order_ids})

    async def print_labels(self, carrier_order_ids: List[str], mode: str = "private") -> Any:
        return await self.client.post("/me/shipment/print", json={"mode": mode, "orders": carrier_order_ids})

    async def tracking(self, carrier_order_ids: List[str]) -> Dict[str, Any]:
        data = await self.client.post("/me/shipment/tracking", json={"orders": carrier_order_ids})
        return data or {}

    async def cancel(self, carrier_order_id: str, description: str = "Cancelado pela loja") -> Any:
        logging.info(f"Cancelling carrier shipment {carrier_order_id}")
        return await self.client.post("/me/shipment/cancel", json={
            "order": {"id": carrier_order_id, "reason_id": "2", "description": description},
        })
