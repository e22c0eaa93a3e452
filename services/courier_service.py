# services/courier_service.py

import logging
from sqlalchemy.ext.asyncio import AsyncSession
from tqdm.asyncio import tqdm
from typing import List, Dict, Any, Optional

import models
from settings import settings
from crud import labels as labels_crud
from . import label_state
from .couriers.common import TrackingStatus
from .couriers.errors import InvalidStateTransitionError, ShippingError

TRACKING_BATCH_SIZE = 50


def parse_tracking(carrier_order_id: str, data: Dict[str, Any]) -> Optional[TrackingStatus]:
    """Picks one shipment out of a /me/shipment/tracking answer keyed by carrier id."""
    entry = (data or {}).get(carrier_order_id)
    if not isinstance(entry, dict):
        return None
    return TrackingStatus(
        carrier_order_id=carrier_order_id,
        raw_status=str(entry.get("status") or ""),
        tracking_code=entry.get("tracking") or entry.get("melhorenvio_tracking"),
    )


def apply_tracking_update(label: models.Label, status: TrackingStatus) -> bool:
    """
    Applies a carrier tracking answer to a label. Returns True if anything changed.
    Statuses without a mapping are only recorded.
    """
    changed = False
    if status.tracking_code and status.tracking_code != label.tracking_code:
        label.tracking_code = status.tracking_code
        changed = True
    if status.raw_status and status.raw_status != label.last_carrier_status:
        label.last_carrier_status = status.raw_status
        changed = True

    target = settings.TRACKING_STATUS_MAP.get(status.raw_status.lower().strip())
    if target and target != label.status:
        try:
            steps = label_state.advance_to(label, target)
        except InvalidStateTransitionError as e:
            logging.warning(f"Ignoring tracking status '{status.raw_status}' for label {label.id}: {e}")
        else:
            logging.info(f"Label {label.id} moved through {steps} after tracking status '{status.raw_status}'")
            changed = True
    return changed


async def worker(courier, carrier_order_ids: List[str]) -> Dict[str, Any]:
    try:
        return await courier.tracking(carrier_order_ids)
    except ShippingError as e:
        logging.error(f"Tracking lookup failed for {len(carrier_order_ids)} label(s): {e}")
        return {}


async def sync_tracking(db: AsyncSession, courier) -> Dict[str, int]:
    """Polls tracking for every label still on its way and applies the results."""
    labels: List[models.Label] = await labels_crud.get_trackable_labels(db)
    if not labels:
        logging.info("No labels to track.")
        return {"checked": 0, "updated": 0}

    label_map = {label.carrier_order_id: label for label in labels}
    ids = list(label_map)
    chunks = [ids[i:i + TRACKING_BATCH_SIZE] for i in range(0, len(ids), TRACKING_BATCH_SIZE)]

    results = await tqdm.gather(*(worker(courier, chunk) for chunk in chunks), desc="Checking label tracking")

    updated_count = 0
    for data in results:
        if not isinstance(data, dict):
            continue
        for carrier_order_id in data:
            label = label_map.get(carrier_order_id)
            status = parse_tracking(carrier_order_id, data)
            if label and status and apply_tracking_update(label, status):
                updated_count += 1

    if updated_count > 0:
        await db.commit()
    logging.info(f"Tracking sync checked {len(labels)} label(s), updated {updated_count}.")
    return {"checked": len(labels), "updated": updated_count}
