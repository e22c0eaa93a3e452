# services/couriers/token_store.py

import logging
from datetime import timezone
from typing import Optional

from pydantic import SecretStr
from sqlalchemy.ext.asyncio import async_sessionmaker

from crud import tokens as tokens_crud
from .common import AccessToken, Credentials


class CredentialStore:
    """
    Holds the client credentials of one carrier account and persists the
    current access/refresh token pair in the `carrier_tokens` table.
    """

    def __init__(self, session_factory: async_sessionmaker, account_key: str, credentials: Credentials):
        self.session_factory = session_factory
        self.account_key = account_key
        self._credentials = credentials

    @property
    def credentials(self) -> Credentials:
        return self._credentials

    def replace_credentials(self, credentials: Credentials):
        self._credentials = credentials

    async def load(self) -> Optional[AccessToken]:
        """Returns the persisted token and adopts the persisted refresh token, if any."""
        async with self.session_factory() as db:
            row = await tokens_crud.get_carrier_token(db, self.account_key)
        if not row:
            return None

        if row.refresh_token:
            self._credentials = self._credentials.model_copy(update={"refresh_token": SecretStr(row.refresh_token)})

        if not row.access_token or not row.expires_at:
            return None
        expires_at = row.expires_at
        if expires_at.tzinfo is None:
            # SQLite hands back naive datetimes; everything is stored in UTC.
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        logging.info(f"Loaded stored carrier token for account '{self.account_key}', valid until {expires_at.isoformat()}")
        return AccessToken(value=row.access_token, expires_at=expires_at)

    async def save(self, token: AccessToken, refresh_token: Optional[str] = None):
        if refresh_token:
            self._credentials = self._credentials.model_copy(update={"refresh_token": SecretStr(refresh_token)})
        async with self.session_factory() as db:
            await tokens_crud.save_carrier_token(
                db,
                self.account_key,
                access_token=token.value.get_secret_value(),
                expires_at=token.expires_at,
                refresh_token=refresh_token,
            )
