# crud/tokens.py

from datetime import datetime
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from models import CarrierToken

async def get_carrier_token(db: AsyncSession, account_key: str) -> Optional[CarrierToken]:
    result = await db.execute(select(CarrierToken).where(CarrierToken.account_key == account_key))
    return result.scalar_one_or_none()

async def save_carrier_token(db: AsyncSession, account_key: str, access_token: str, expires_at: datetime, refresh_token: Optional[str]):
    """Creates or replaces the token row of an account."""
    row = await get_carrier_token(db, account_key)
    if not row:
        row = CarrierToken(account_key=account_key)
        db.add(row)
    row.access_token = access_token
    row.expires_at = expires_at
    if refresh_token: # Only overwrite when the carrier sent a new one
        row.refresh_token = refresh_token
    await db.commit()
    return row

async def seed_refresh_token(db: AsyncSession, account_key: str, refresh_token: str):
    """Stores a refresh token and drops the cached access token, so the next call refreshes."""
    row = await get_carrier_token(db, account_key)
    if not row:
        row = CarrierToken(account_key=account_key)
        db.add(row)
    row.refresh_token = refresh_token
    row.access_token = None
    row.expires_at = None
    await db.commit()
    return row
