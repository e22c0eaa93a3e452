# crud/labels.py

from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from models import Label, LABEL_CANCELLED, LABEL_PURCHASED, LABEL_IN_TRANSIT

async def get_label(db: AsyncSession, label_id: int) -> Optional[Label]:
    return await db.get(Label, label_id)

async def get_active_label_for_order(db: AsyncSession, order_id: int) -> Optional[Label]:
    """The order's label that has not been cancelled, if there is one."""
    result = await db.execute(
        select(Label).where(Label.order_id == order_id, Label.status != LABEL_CANCELLED)
    )
    return result.scalars().first()

async def get_labels_for_order(db: AsyncSession, order_id: int) -> List[Label]:
    result = await db.execute(select(Label).where(Label.order_id == order_id).order_by(Label.id))
    return result.scalars().all()

async def get_trackable_labels(db: AsyncSession) -> List[Label]:
    result = await db.execute(
        select(Label).where(Label.status.in_([LABEL_PURCHASED, LABEL_IN_TRANSIT])).order_by(Label.id)
    )
    return result.scalars().all()

async def create_label(db: AsyncSession, **fields) -> Label:
    label = Label(**fields)
    db.add(label)
    await db.commit()
    await db.refresh(label)
    return label
