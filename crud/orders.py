# crud/orders.py

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm import selectinload
from models import Order

async def get_order(db: AsyncSession, order_id: int) -> Optional[Order]:
    """Loads an order together with its products."""
    result = await db.execute(
        select(Order).options(selectinload(Order.line_items)).where(Order.id == order_id)
    )
    return result.scalar_one_or_none()
