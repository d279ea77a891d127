"""
Status state machines for trains and car orders.

All status changes made by the order, switch-list, train and session services
go through transition(); the tables below are the only place the allowed
moves are written down.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple


class TrainStatus(str, Enum):
    PLANNED = "Planned"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class TrainEvent(str, Enum):
    GENERATE_SWITCH_LIST = "generate_switch_list"
    COMPLETE = "complete"
    CANCEL = "cancel"


class CarOrderStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_TRANSIT = "in-transit"
    DELIVERED = "delivered"


class CarOrderEvent(str, Enum):
    ASSIGN = "assign"
    DEPART = "depart"
    DELIVER = "deliver"
    REVERT = "revert"


TERMINAL_TRAIN_STATUSES = frozenset({TrainStatus.COMPLETED, TrainStatus.CANCELLED})

# Orders in these statuses hold a car and a train.
COMMITTED_ORDER_STATUSES = frozenset({CarOrderStatus.ASSIGNED, CarOrderStatus.IN_TRANSIT})

TRAIN_TRANSITIONS: Dict[Tuple[TrainStatus, TrainEvent], TrainStatus] = {
    (TrainStatus.PLANNED, TrainEvent.GENERATE_SWITCH_LIST): TrainStatus.IN_PROGRESS,
    (TrainStatus.PLANNED, TrainEvent.CANCEL): TrainStatus.CANCELLED,
    (TrainStatus.IN_PROGRESS, TrainEvent.COMPLETE): TrainStatus.COMPLETED,
    (TrainStatus.IN_PROGRESS, TrainEvent.CANCEL): TrainStatus.CANCELLED,
}

CAR_ORDER_TRANSITIONS: Dict[Tuple[CarOrderStatus, CarOrderEvent], CarOrderStatus] = {
    (CarOrderStatus.PENDING, CarOrderEvent.ASSIGN): CarOrderStatus.ASSIGNED,
    (CarOrderStatus.PENDING, CarOrderEvent.DELIVER): CarOrderStatus.DELIVERED,
    (CarOrderStatus.ASSIGNED, CarOrderEvent.DEPART): CarOrderStatus.IN_TRANSIT,
    (CarOrderStatus.ASSIGNED, CarOrderEvent.DELIVER): CarOrderStatus.DELIVERED,
    (CarOrderStatus.ASSIGNED, CarOrderEvent.REVERT): CarOrderStatus.PENDING,
    (CarOrderStatus.IN_TRANSIT, CarOrderEvent.DELIVER): CarOrderStatus.DELIVERED,
    (CarOrderStatus.IN_TRANSIT, CarOrderEvent.REVERT): CarOrderStatus.PENDING,
}


def _train_rejection(current: TrainStatus, event: TrainEvent) -> str:
    if event == TrainEvent.GENERATE_SWITCH_LIST:
        return (
            f"Cannot generate switch list for train with status: {current.value}. "
            "Only 'Planned' trains can generate switch lists."
        )
    if event == TrainEvent.COMPLETE:
        return (
            f"Cannot complete train with status: {current.value}. "
            "Only 'In Progress' trains can be completed."
        )
    if current == TrainStatus.COMPLETED:
        return "Cannot cancel completed train"
    return f"Cannot cancel train with status: {current.value}"


def _car_order_rejection(current: CarOrderStatus, event: CarOrderEvent) -> str:
    return f"Cannot {event.value} car order with status: {current.value}"


@dataclass(frozen=True)
class Transition:
    """Outcome of a transition request: the next status, or why it was refused."""

    current: Enum
    event: Enum
    next_status: Optional[Enum] = None
    reason: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.next_status is not None


def transition(current, event) -> Transition:
    """Look up the next status for a train or car order event."""
    if isinstance(event, TrainEvent):
        current = TrainStatus(current)
        next_status = TRAIN_TRANSITIONS.get((current, event))
        reason = None if next_status else _train_rejection(current, event)
    elif isinstance(event, CarOrderEvent):
        current = CarOrderStatus(current)
        next_status = CAR_ORDER_TRANSITIONS.get((current, event))
        reason = None if next_status else _car_order_rejection(current, event)
    else:
        raise TypeError(f"Unknown event type: {type(event).__name__}")
    return Transition(current=current, event=event, next_status=next_status, reason=reason)


def allowed_order_statuses(current) -> set:
    """Statuses a car order may move to directly from its current status."""
    current = CarOrderStatus(current)
    return {target for (source, _), target in CAR_ORDER_TRANSITIONS.items() if source == current}


def order_event_for(current, target) -> Optional[CarOrderEvent]:
    """Find the event that moves an order from current to target, if any."""
    current = CarOrderStatus(current)
    target = CarOrderStatus(target)
    for (source, event), destination in CAR_ORDER_TRANSITIONS.items():
        if source == current and destination == target:
            return event
    return None
