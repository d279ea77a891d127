"""
Service for managing trains and their lifecycle.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy.orm import Session

from railops.exceptions import (
    BadRequestError, ConflictError, InvalidTransitionError, NotFoundError, ValidationFailedError
)
from railops.services.operations import entity_store
from railops.services.operations.entity_store import unit_of_work
from railops.services.operations.locks import operation_locks
from railops.services.operations.models import Car, Train
from railops.services.operations.order_service import CarOrderService
from railops.services.operations.state_machine import TrainEvent, TrainStatus, transition
from railops.utils.helpers import utcnow

logger = logging.getLogger(__name__)

MAX_TRAIN_CAPACITY = 100
ACTIVE_TRAIN_STATUSES = [TrainStatus.PLANNED.value, TrainStatus.IN_PROGRESS.value]


def calculate_capacity_usage(switch_list: Optional[Dict[str, Any]]) -> Dict[str, int]:
    """Peak and final car count along a switch list."""
    if not switch_list:
        return {"max_load": 0, "final_load": 0}

    load = 0
    max_load = 0
    for visit in switch_list.get("stations", []):
        load += len(visit.get("pickups", []))
        max_load = max(max_load, load)
        load -= len(visit.get("setouts", []))
    return {"max_load": max_load, "final_load": load}


class TrainService:
    """Service for train CRUD and lifecycle operations."""

    # ==================== QUERIES ====================

    @staticmethod
    def get_train(db: Session, train_id: str) -> Train:
        """Get a train by ID or raise NotFoundError."""
        return entity_store.trains.get_or_404(db, train_id)

    @staticmethod
    def list_trains(
        db: Session,
        session_number: Optional[int] = None,
        status: Optional[str] = None,
        route_id: Optional[str] = None,
        search: Optional[str] = None
    ) -> List[Train]:
        """Get trains matching the filters, ordered by name."""
        query = db.query(Train)
        if session_number:
            query = query.filter(Train.session_number == session_number)
        if status:
            query = query.filter(Train.status == status)
        if route_id:
            query = query.filter(Train.route_id == route_id)
        trains = query.all()

        if search:
            needle = search.lower()
            trains = [t for t in trains if needle in t.name.lower()]

        trains.sort(key=lambda t: (t.name, t.id))
        return trains

    @staticmethod
    def train_summary(db: Session, train: Train) -> Dict[str, Any]:
        """Train row with its route name and switch list capacity usage."""
        route = entity_store.routes.find_by_id(db, train.route_id)
        data = train.to_dict()
        data["route_name"] = route.name if route else None
        data["capacity_usage"] = calculate_capacity_usage(train.switch_list)
        return data

    # ==================== VALIDATION ====================

    @staticmethod
    def _validate_train_fields(
        db: Session,
        name: str,
        route_id: str,
        locomotive_ids: List[str],
        max_capacity: int,
        session_number: int,
        train_id: Optional[str] = None
    ) -> None:
        if not name or not name.strip():
            raise ValidationFailedError("Train name is required")
        if not isinstance(max_capacity, int) or not 1 <= max_capacity <= MAX_TRAIN_CAPACITY:
            raise ValidationFailedError(
                f"max_capacity must be between 1 and {MAX_TRAIN_CAPACITY}", {"max_capacity": max_capacity}
            )
        if not locomotive_ids:
            raise ValidationFailedError("At least one locomotive is required")

        if entity_store.routes.find_by_id(db, route_id) is None:
            raise NotFoundError(f"Route with ID '{route_id}' does not exist")

        inactive = []
        for locomotive_id in locomotive_ids:
            locomotive = entity_store.locomotives.find_by_id(db, locomotive_id)
            if locomotive is None:
                raise NotFoundError(f"Locomotive with ID '{locomotive_id}' does not exist")
            if not locomotive.is_in_service:
                inactive.append(locomotive_id)
        if inactive:
            raise BadRequestError("Locomotives are not in service", inactive)

        others = [
            t for t in entity_store.trains.find_by_query(db, session_number=session_number)
            if t.id != train_id
        ]
        if any(t.name == name for t in others):
            raise ConflictError(f"A train named '{name}' already exists in session {session_number}")

        wanted = set(locomotive_ids)
        for other in others:
            if other.status not in ACTIVE_TRAIN_STATUSES:
                continue
            busy = wanted.intersection(other.locomotive_ids or [])
            if busy:
                raise ConflictError(
                    f"Locomotives already assigned to train '{other.name}'", sorted(busy)
                )

    @staticmethod
    def _require_planned(train: Train, action: str) -> None:
        if train.status != TrainStatus.PLANNED.value:
            logger.warning(f"Refusing to {action} train {train.name} with status {train.status}")
            raise ConflictError(
                f"Cannot {action} train with status: {train.status}. "
                f"Only 'Planned' trains can be {action}d."
            )

    # ==================== CRUD ====================

    @staticmethod
    def create_train(
        db: Session,
        name: str,
        route_id: str,
        locomotive_ids: List[str],
        max_capacity: int,
        session_number: Optional[int] = None,
        train_id: Optional[str] = None
    ) -> Train:
        """Create a Planned train in the given (or current) session."""
        if session_number is None:
            session_number = TrainService._current_session_number(db)
        else:
            session_number = CarOrderService.resolve_session_number(db, session_number)

        TrainService._validate_train_fields(db, name, route_id, locomotive_ids, max_capacity, session_number)

        fields = dict(
            name=name,
            route_id=route_id,
            session_number=session_number,
            status=TrainStatus.PLANNED.value,
            locomotive_ids=list(locomotive_ids),
            max_capacity=max_capacity,
            assigned_car_ids=[],
            switch_list=None
        )
        if train_id:
            fields["id"] = train_id
        train = entity_store.trains.create(db, **fields)
        logger.info(f"Created train: {name} (ID: {train.id}, session {session_number})")
        return train

    @staticmethod
    def _current_session_number(db: Session) -> int:
        current = entity_store.find_current_session(db)
        if current is None:
            raise NotFoundError("No active operating session")
        return current.current_session_number

    @staticmethod
    def update_train(db: Session, train_id: str, **changes: Any) -> Train:
        """Update a Planned train's name, route, locomotives or capacity."""
        with operation_locks.train(train_id):
            train = entity_store.trains.get_or_404(db, train_id)
            TrainService._require_planned(train, "update")

            allowed = {"name", "route_id", "locomotive_ids", "max_capacity"}
            changes = {k: v for k, v in changes.items() if k in allowed and v is not None}
            merged = {
                "name": train.name,
                "route_id": train.route_id,
                "locomotive_ids": list(train.locomotive_ids or []),
                "max_capacity": train.max_capacity,
                **changes
            }
            TrainService._validate_train_fields(
                db, merged["name"], merged["route_id"], merged["locomotive_ids"],
                merged["max_capacity"], train.session_number, train_id=train.id
            )
            if "locomotive_ids" in changes:
                changes["locomotive_ids"] = list(changes["locomotive_ids"])
            return entity_store.trains.update(db, train_id, **changes)

    @staticmethod
    def delete_train(db: Session, train_id: str) -> None:
        """Delete a Planned train."""
        with operation_locks.train(train_id):
            train = entity_store.trains.get_or_404(db, train_id)
            TrainService._require_planned(train, "delete")
            entity_store.trains.delete(db, train_id)

    # ==================== LIFECYCLE ====================

    @staticmethod
    def complete_train(db: Session, train_id: str) -> Tuple[Train, Dict[str, int]]:
        """
        Complete an In Progress train.

        Every car in the switch list's setouts is moved to its destination
        industry and the orders the train carried are delivered, all in one
        transaction.

        Returns:
            Updated train and {cars_moved, orders_delivered}
        """
        with operation_locks.train(train_id):
            train = entity_store.trains.get_or_404(db, train_id)
            result = transition(train.status, TrainEvent.COMPLETE)
            if not result.allowed:
                logger.warning(f"Completion refused for train {train.name}: status {train.status}")
                raise InvalidTransitionError(result.reason, {"train_id": train_id, "status": train.status})

            setouts = [
                item
                for visit in (train.switch_list or {}).get("stations", [])
                for item in visit.get("setouts", [])
            ]

            # Load every car before writing anything.
            cars: Dict[str, Car] = {}
            missing = []
            for item in setouts:
                car = entity_store.cars.find_by_id(db, item["car_id"])
                if car is None:
                    missing.append(item["car_id"])
                else:
                    cars[car.id] = car
            if missing:
                raise NotFoundError("Cars in the switch list no longer exist", missing)

            with unit_of_work(db, "complete train"):
                moved_at = utcnow()
                for item in setouts:
                    car = cars[item["car_id"]]
                    car.current_industry_id = item["destination_industry_id"]
                    car.sessions_at_current_location = 0
                    car.last_moved = moved_at
                delivered = CarOrderService.deliver_orders_for_train(db, train.id)
                train.status = result.next_status.value

            db.refresh(train)
            stats = {"cars_moved": len(setouts), "orders_delivered": len(delivered)}
            logger.info(
                f"Completed train {train.name}: {stats['cars_moved']} cars moved, "
                f"{stats['orders_delivered']} orders delivered"
            )
            return train, stats

    @staticmethod
    def cancel_train(db: Session, train_id: str) -> Tuple[Train, Dict[str, int]]:
        """
        Cancel a Planned or In Progress train.

        Orders the train holds go back to pending and its assigned cars are
        released; no car moves.

        Returns:
            Updated train and {orders_reverted}
        """
        with operation_locks.train(train_id):
            train = entity_store.trains.get_or_404(db, train_id)
            result = transition(train.status, TrainEvent.CANCEL)
            if not result.allowed:
                logger.warning(f"Cancellation refused for train {train.name}: status {train.status}")
                raise InvalidTransitionError(result.reason, {"train_id": train_id, "status": train.status})

            with unit_of_work(db, "cancel train"):
                reverted = []
                if train.status == TrainStatus.IN_PROGRESS.value:
                    reverted = CarOrderService.revert_orders_for_train(db, train.id)
                    train.assigned_car_ids = []
                train.status = result.next_status.value

            db.refresh(train)
            logger.info(f"Cancelled train {train.name}: {len(reverted)} orders reverted")
            return train, {"orders_reverted": len(reverted)}
