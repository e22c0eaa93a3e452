# services/label_state.py

from datetime import datetime, timezone
from typing import Dict, List, Set

import models
from services.couriers.errors import InvalidStateTransitionError

ALLOWED_TRANSITIONS: Dict[str, Set[str]] = {
    models.LABEL_PURCHASED: {models.LABEL_IN_TRANSIT, models.LABEL_CANCELLED},
    models.LABEL_IN_TRANSIT: {models.LABEL_DELIVERED},
    models.LABEL_DELIVERED: set(),
    models.LABEL_CANCELLED: set(),
}

# Forward path used to catch up when tracking skips a state.
FORWARD_PATH: List[str] = [models.LABEL_PURCHASED, models.LABEL_IN_TRANSIT, models.LABEL_DELIVERED]


def can_transition(current: str, new: str) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, set())


def transition(label: models.Label, new_status: str):
    if not can_transition(label.status, new_status):
        raise InvalidStateTransitionError(
            f"Label {label.id} cannot go from {label.status} to {new_status}",
            details={"label_id": label.id, "from": label.status, "to": new_status},
        )
    label.status = new_status
    if new_status == models.LABEL_CANCELLED:
        label.cancelled_at = datetime.now(timezone.utc)


def advance_to(label: models.Label, target: str) -> List[str]:
    """
    Moves a label forward to `target` one legal step at a time.
    Returns the statuses passed through; empty when the label is already there.
    """
    if label.status == target:
        return []
    if target in FORWARD_PATH and label.status in FORWARD_PATH:
        start = FORWARD_PATH.index(label.status)
        end = FORWARD_PATH.index(target)
        if end > start:
            steps = FORWARD_PATH[start + 1:end + 1]
            for step in steps:
                transition(label, step)
            return steps
    transition(label, target)
    return [target]
