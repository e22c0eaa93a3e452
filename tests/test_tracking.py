from decimal import Decimal

import pytest

import models
from services import courier_service, label_state
from services.couriers.common import TrackingStatus
from services.couriers.errors import InvalidStateTransitionError
from tests.fake_carrier import reply, tracking_reply


def _label(label_id: int, status: str = models.LABEL_PURCHASED) -> models.Label:
    return models.Label(
        id=label_id,
        order_id=label_id,
        carrier_order_id=f"ord-{label_id}",
        carrier_service_id=1,
        price=Decimal("20.00"),
        status=status,
    )


@pytest.mark.parametrize("current, new, allowed", [
    (models.LABEL_PURCHASED, models.LABEL_IN_TRANSIT, True),
    (models.LABEL_PURCHASED, models.LABEL_CANCELLED, True),
    (models.LABEL_IN_TRANSIT, models.LABEL_DELIVERED, True),
    (models.LABEL_PURCHASED, models.LABEL_DELIVERED, False),
    (models.LABEL_IN_TRANSIT, models.LABEL_CANCELLED, False),
    (models.LABEL_DELIVERED, models.LABEL_CANCELLED, False),
    (models.LABEL_CANCELLED, models.LABEL_PURCHASED, False),
    (models.LABEL_DELIVERED, models.LABEL_IN_TRANSIT, False),
])
def test_transition_table(current, new, allowed):
    assert label_state.can_transition(current, new) is allowed


def test_advance_steps_through_in_transit():
    label = _label(1)

    assert label_state.advance_to(label, models.LABEL_DELIVERED) == [models.LABEL_IN_TRANSIT, models.LABEL_DELIVERED]
    assert label.status == models.LABEL_DELIVERED


def test_nothing_leaves_a_terminal_state():
    label = _label(1, models.LABEL_CANCELLED)

    with pytest.raises(InvalidStateTransitionError):
        label_state.advance_to(label, models.LABEL_IN_TRANSIT)
    assert label.status == models.LABEL_CANCELLED


def test_tracking_update_records_unmapped_statuses():
    label = _label(1)

    changed = courier_service.apply_tracking_update(label, TrackingStatus(carrier_order_id="ord-1", raw_status="released", tracking_code="BR555"))

    assert changed
    assert label.status == models.LABEL_PURCHASED
    assert label.last_carrier_status == "released"
    assert label.tracking_code == "BR555"


def test_tracking_update_ignores_impossible_moves():
    label = _label(1, models.LABEL_IN_TRANSIT)

    courier_service.apply_tracking_update(label, TrackingStatus(carrier_order_id="ord-1", raw_status="canceled"))

    assert label.status == models.LABEL_IN_TRANSIT
    assert label.last_carrier_status == "canceled"


@pytest.mark.asyncio
async def test_sync_moves_labels_forward(db, courier, carrier):
    db.add_all([_label(1), _label(2, models.LABEL_IN_TRANSIT), _label(3, models.LABEL_CANCELLED)])
    await db.commit()
    carrier.on("POST", "/me/shipment/tracking", tracking_reply("delivered", "BR777"))

    result = await courier_service.sync_tracking(db, courier)

    assert result == {"checked": 2, "updated": 2}
    first = await db.get(models.Label, 1)
    cancelled = await db.get(models.Label, 3)
    assert first.status == models.LABEL_DELIVERED
    assert first.tracking_code == "BR777"
    assert cancelled.status == models.LABEL_CANCELLED


@pytest.mark.asyncio
async def test_sync_survives_carrier_failure(db, courier, carrier):
    db.add(_label(1))
    await db.commit()
    carrier.on("POST", "/me/shipment/tracking", reply(503))

    result = await courier_service.sync_tracking(db, courier)

    assert result == {"checked": 1, "updated": 0}


@pytest.mark.asyncio
async def test_sync_with_nothing_to_track(db, courier, carrier):
    assert await courier_service.sync_tracking(db, courier) == {"checked": 0, "updated": 0}
    assert carrier.requests == []
