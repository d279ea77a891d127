"""
Service for the operating session lifecycle: advance, rollback and description.
"""
import logging
from collections import Counter
from typing import Any, Dict, List, Optional, Tuple
from pydantic import BaseModel, ValidationError, field_validator
from sqlalchemy.orm import Session

from railops.config import settings
from railops.exceptions import BadRequestError, InternalError, NotFoundError, ValidationFailedError
from railops.services.operations import entity_store
from railops.services.operations.entity_store import unit_of_work
from railops.services.operations.locks import operation_locks
from railops.services.operations.models import Car, CarOrder, OperatingSession, Train
from railops.services.operations.order_service import CarOrderService
from railops.services.operations.state_machine import TrainStatus
from railops.utils.helpers import get_timestamp, utcnow

logger = logging.getLogger(__name__)


class SessionSnapshot(BaseModel):
    """Structure of OperatingSession.previous_session_snapshot."""
    session_number: int
    taken_at: str
    cars: List[Dict[str, Any]]
    trains: List[Dict[str, Any]]
    car_orders: List[Dict[str, Any]]

    @field_validator("cars", "trains", "car_orders")
    @classmethod
    def rows_have_ids(cls, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        for row in rows:
            if not row.get("id"):
                raise ValueError("every snapshot row needs an id")
        return rows

    @field_validator("session_number")
    @classmethod
    def positive_session(cls, value: int) -> int:
        if value < 1:
            raise ValueError("session_number must be positive")
        return value


class SessionService:
    """Service for operating session operations."""

    @staticmethod
    def _require_session(db: Session) -> OperatingSession:
        current = entity_store.find_current_session(db)
        if current is None:
            raise NotFoundError("No operating session found")
        return current

    @staticmethod
    def get_current_session(db: Session) -> OperatingSession:
        """Get the operating session, creating session 1 on first use."""
        current = entity_store.find_current_session(db)
        if current is not None:
            return current

        logger.info("No operating session yet, creating session 1")
        return entity_store.operating_sessions.create(
            db,
            current_session_number=1,
            session_date=utcnow(),
            description="Initial operating session",
            previous_session_snapshot=None
        )

    @staticmethod
    def take_snapshot(db: Session, session_number: int) -> Dict[str, Any]:
        """Full copies of every car, train and car order."""
        return {
            "session_number": session_number,
            "taken_at": get_timestamp(),
            "cars": [car.to_dict() for car in entity_store.cars.find_all(db)],
            "trains": [train.to_dict() for train in entity_store.trains.find_all(db)],
            "car_orders": [order.to_dict() for order in entity_store.car_orders.find_all(db)]
        }

    @staticmethod
    def advance_session(db: Session, description: Optional[str] = None) -> Tuple[OperatingSession, Dict[str, int]]:
        """
        Close the current session and open the next one.

        Snapshots cars, trains and car orders, ages every car by one session,
        deletes completed trains and reverts the orders of trains still in
        progress. In-progress train rows themselves are left as they are.

        Returns:
            Updated session and advancement stats
        """
        with operation_locks.session():
            current = SessionService._require_session(db)
            if description:
                SessionService._validate_description(description)
            previous_number = current.current_session_number
            deleted_ids = []

            with unit_of_work(db, "advance session"):
                snapshot = SessionService.take_snapshot(db, previous_number)

                cars = entity_store.cars.find_all(db)
                for car in cars:
                    car.sessions_at_current_location = (car.sessions_at_current_location or 0) + 1

                for train in entity_store.trains.find_by_query(db, status=TrainStatus.COMPLETED.value):
                    deleted_ids.append(train.id)
                    db.delete(train)

                active = entity_store.trains.find_by_query(db, status=TrainStatus.IN_PROGRESS.value)
                orders_reverted = 0
                for train in active:
                    orders_reverted += len(CarOrderService.revert_orders_for_train(db, train.id))

                next_number = previous_number + 1
                current.current_session_number = next_number
                current.session_date = utcnow()
                current.description = description or f"Operating Session {next_number}"
                current.previous_session_snapshot = snapshot

            operation_locks.clear_train_locks()

            db.refresh(current)
            stats = {
                "trains_deleted": len(deleted_ids),
                "cars_updated": len(cars),
                "active_trains_reverted": len(active),
                "orders_reverted": orders_reverted,
                "advanced_to_session": next_number
            }
            logger.info(
                f"Advanced from session {previous_number} to {next_number}: "
                f"{stats['trains_deleted']} trains deleted, {stats['orders_reverted']} orders reverted"
            )
            return current, stats

    @staticmethod
    def rollback_session(db: Session, description: Optional[str] = None) -> Tuple[OperatingSession, Dict[str, int]]:
        """
        Restore cars, trains and car orders from the previous session's snapshot.

        Only one level of undo exists; the snapshot is cleared afterwards.

        Returns:
            Updated session and restore stats
        """
        with operation_locks.session():
            current = SessionService._require_session(db)
            if current.current_session_number <= 1:
                raise BadRequestError("Cannot rollback from session 1")
            if not current.previous_session_snapshot:
                raise BadRequestError("No previous session snapshot available")
            if description:
                SessionService._validate_description(description)

            try:
                snapshot = SessionSnapshot.model_validate(current.previous_session_snapshot)
            except ValidationError as e:
                logger.error(f"Session snapshot failed validation: {str(e)}")
                raise InternalError("Invalid session snapshot", [err["msg"] for err in e.errors()])

            with unit_of_work(db, "rollback session"):
                # Deletes are flushed first so restored rows can reuse the same ids.
                for model in (CarOrder, Train, Car):
                    for row in db.query(model).all():
                        db.delete(row)
                db.flush()

                for model, rows in ((Car, snapshot.cars), (Train, snapshot.trains), (CarOrder, snapshot.car_orders)):
                    for row in rows:
                        db.add(model.from_dict(row))
                db.flush()

                current.current_session_number = snapshot.session_number
                current.session_date = utcnow()
                current.description = description or f"Rolled back to session {snapshot.session_number}"
                current.previous_session_snapshot = None

            db.refresh(current)
            stats = {
                "cars_restored": len(snapshot.cars),
                "trains_restored": len(snapshot.trains),
                "car_orders_restored": len(snapshot.car_orders),
                "rolled_back_to_session": snapshot.session_number
            }
            logger.info(f"Rolled back to session {snapshot.session_number}: {stats}")
            return current, stats

    @staticmethod
    def _validate_description(description: Any) -> str:
        if not isinstance(description, str) or not description.strip():
            raise ValidationFailedError("Description must be a non-empty string")
        limit = settings.session_description_max_length
        if len(description) > limit:
            raise ValidationFailedError(f"Description cannot exceed {limit} characters")
        return description

    @staticmethod
    def update_session_description(db: Session, description: Any) -> OperatingSession:
        """Replace the current session's description."""
        SessionService._validate_description(description)
        with operation_locks.session():
            current = SessionService._require_session(db)
            with unit_of_work(db, "update session description"):
                current.description = description
            db.refresh(current)
            logger.info(f"Updated description of session {current.current_session_number}")
            return current

    @staticmethod
    def session_stats(db: Session) -> Dict[str, Any]:
        """Entity counts and rollback availability for the current session."""
        current = SessionService.get_current_session(db)
        cars = entity_store.cars.find_all(db)
        trains = entity_store.trains.find_all(db)
        orders = entity_store.car_orders.find_all(db)
        has_snapshot = bool(current.previous_session_snapshot)

        return {
            "current_session_number": current.current_session_number,
            "session_date": current.session_date.isoformat() if current.session_date else None,
            "description": current.description,
            "has_snapshot": has_snapshot,
            "can_rollback": current.current_session_number > 1 and has_snapshot,
            "entity_counts": {
                "cars": len(cars),
                "trains": len(trains),
                "car_orders": len(orders)
            },
            "trains_by_status": dict(Counter(t.status for t in trains)),
            "orders_by_status": dict(Counter(o.status for o in orders))
        }
