# services/couriers/client.py

import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Optional

import httpx

from .common import AccessToken
from .errors import (
    AuthError,
    CarrierRequestError,
    CarrierUnavailableError,
    FailureKind,
)
from .token_manager import TokenManager


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0
    retry_after_cap: float = 30.0
    jitter: float = 0.5  # +/- 50%

    def backoff(self, attempt: int) -> float:
        """Exponential delay with jitter before retry number `attempt` (1-based)."""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        return max(0.0, delay + delay * self.jitter * (2 * random.random() - 1))

    def delay_for(self, attempt: int, retry_after: Optional[float]) -> float:
        if retry_after is not None:
            return min(retry_after, self.retry_after_cap)
        return self.backoff(attempt)


@dataclass(frozen=True)
class AttemptOutcome:
    """Result of a single HTTP attempt: either a response or a classified failure."""
    response: Optional[httpx.Response] = None
    kind: Optional[FailureKind] = None
    status_code: Optional[int] = None
    detail: str = ""
    payload: Any = None
    retry_after: Optional[float] = None

    @property
    def ok(self) -> bool:
        return self.kind is None


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def _error_payload(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def _error_message(payload: Any, status_code: int) -> str:
    if isinstance(payload, dict):
        message = payload.get("message") or payload.get("error") or payload.get("error_description")
        if message:
            return str(message)
    return f"HTTP {status_code}"


def classify(response: httpx.Response) -> AttemptOutcome:
    status = response.status_code
    if status < 400:
        return AttemptOutcome(response=response, status_code=status)

    payload = _error_payload(response)
    detail = _error_message(payload, status)
    if status == 401:
        kind = FailureKind.AUTH_REJECTED
    elif status == 429:
        return AttemptOutcome(
            kind=FailureKind.RATE_LIMITED, status_code=status, detail=detail, payload=payload,
            retry_after=parse_retry_after(response.headers.get("Retry-After")),
        )
    elif status >= 500:
        kind = FailureKind.SERVER_ERROR
    else:
        kind = FailureKind.CLIENT_ERROR
    return AttemptOutcome(kind=kind, status_code=status, detail=detail, payload=payload)


class CarrierClient:
    """
    Transport for the carrier API. Every call returns the decoded body of a
    successful response or raises exactly one terminal ShippingError; retries
    and token refreshes happen in here and are never visible to callers.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        base_url: str,
        tokens: TokenManager,
        policy: RetryPolicy = RetryPolicy(),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.tokens = tokens
        self.policy = policy
        self.sleep = sleep

    async def get(self, path: str, params: Optional[dict] = None) -> Any:
        return await self.send("GET", path, params=params)

    async def post(self, path: str, json: Any = None) -> Any:
        return await self.send("POST", path, json=json)

    async def send(self, method: str, path: str, json: Any = None, params: Optional[dict] = None) -> Any:
        auth_retried = False
        failures = 0

        while True:
            token = await self.tokens.get_valid_token()
            outcome = await self._attempt(method, path, token, json, params)

            if outcome.ok:
                return self._decode(outcome.response, method, path)

            if outcome.kind is FailureKind.AUTH_REJECTED:
                if auth_retried:
                    logging.error(f"Carrier rejected a freshly refreshed token on {method} {path}")
                    raise AuthError(f"Carrier rejected the access token: {outcome.detail}", details=outcome.payload)
                auth_retried = True
                logging.warning(f"Carrier answered 401 on {method} {path}, refreshing the token once")
                await self.tokens.force_refresh(token)
                continue

            if not outcome.kind.retryable:
                logging.warning(f"Carrier rejected {method} {path} with HTTP {outcome.status_code}: {outcome.detail}")
                raise CarrierRequestError(
                    f"Carrier rejected the request: {outcome.detail}",
                    status_code=outcome.status_code,
                    payload=outcome.payload,
                )

            failures += 1
            if failures >= self.policy.max_attempts:
                logging.error(
                    f"Giving up on {method} {path} after {failures} attempts "
                    f"({outcome.kind.value}, HTTP {outcome.status_code}): {outcome.detail}"
                )
                raise CarrierUnavailableError(
                    f"Carrier unavailable after {failures} attempts: {outcome.detail}",
                    kind=outcome.kind,
                    status_code=outcome.status_code,
                    attempts=failures,
                )

            delay = self.policy.delay_for(failures, outcome.retry_after)
            logging.warning(
                f"{outcome.kind.value} on {method} {path}, "
                f"retry {failures}/{self.policy.max_attempts - 1} after {delay:.2f}s"
            )
            await self.sleep(delay)

    async def _attempt(self, method: str, path: str, token: AccessToken, json: Any, params: Optional[dict]) -> AttemptOutcome:
        headers = {"Authorization": token.bearer}
        try:
            response = await self.http.request(
                method, f"{self.base_url}{path}", json=json, params=params, headers=headers
            )
        except httpx.TransportError as e:
            return AttemptOutcome(kind=FailureKind.TRANSIENT_NETWORK, detail=f"{type(e).__name__}: {e}")
        return classify(response)

    @staticmethod
    def _decode(response: httpx.Response, method: str, path: str) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            raise CarrierRequestError(
                f"Carrier sent a non-JSON body for {method} {path}",
                status_code=response.status_code,
                payload=response.text,
            )
