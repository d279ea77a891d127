"""
Service for generating and managing car orders.
"""
import logging
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from railops.exceptions import (
    BadRequestError, ConflictError, InvalidTransitionError, NotFoundError, ValidationFailedError
)
from railops.services.operations import entity_store
from railops.services.operations.entity_store import unit_of_work
from railops.services.operations.models import Car, CarOrder
from railops.services.operations.state_machine import (
    COMMITTED_ORDER_STATUSES, CarOrderEvent, CarOrderStatus, order_event_for, transition
)
from railops.utils.helpers import utcnow

logger = logging.getLogger(__name__)

NON_TERMINAL_ORDER_STATUSES = [
    CarOrderStatus.PENDING.value,
    CarOrderStatus.ASSIGNED.value,
    CarOrderStatus.IN_TRANSIT.value,
]


def apply_order_event(order: CarOrder, event: CarOrderEvent) -> None:
    """Move an order along its state machine or raise InvalidTransitionError."""
    result = transition(order.status, event)
    if not result.allowed:
        raise InvalidTransitionError(result.reason, {"car_order_id": order.id})
    order.status = result.next_status.value
    if result.next_status == CarOrderStatus.PENDING:
        order.assigned_car_id = None
        order.assigned_train_id = None


class CarOrderService:
    """Service for car order generation and lifecycle operations."""

    @staticmethod
    def resolve_session_number(db: Session, session_number: Optional[int]) -> int:
        """Use the given session number, or the current session's."""
        if session_number is not None:
            if not isinstance(session_number, int) or isinstance(session_number, bool) or session_number < 1:
                raise ValidationFailedError("session_number must be a positive integer", {"session_number": session_number})
            return session_number

        current = entity_store.find_current_session(db)
        if current is None:
            raise NotFoundError("Cannot generate orders without an active operating session")
        return current.current_session_number

    @staticmethod
    def generate_orders(
        db: Session,
        session_number: Optional[int] = None,
        industry_ids: Optional[Iterable[str]] = None,
        force: bool = False
    ) -> Dict[str, Any]:
        """
        Generate pending car orders from every industry's demand configuration.

        A demand entry fires when the session number is a multiple of its
        frequency. Entries that already have a non-terminal order for the same
        industry, AAR type and session are skipped unless force is set.

        Args:
            db: Database session
            session_number: Target session; defaults to the current one
            industry_ids: Restrict generation to these industries
            force: Generate even when matching orders already exist

        Returns:
            Summary with totals and per-industry / per-AAR-type breakdowns
        """
        session_number = CarOrderService.resolve_session_number(db, session_number)

        industries = [i for i in entity_store.industries.find_all(db) if i.car_demand_config]
        if industry_ids:
            wanted = set(industry_ids)
            industries = [i for i in industries if i.id in wanted]
        industries.sort(key=lambda i: i.id)

        created: List[CarOrder] = []
        processed: List[Dict[str, Any]] = []
        skipped = 0

        with unit_of_work(db, "generate car orders"):
            for industry in industries:
                for demand in industry.car_demand_config:
                    frequency = demand.get("frequency") or 1
                    if session_number % frequency != 0:
                        continue

                    if not force and CarOrderService._has_open_order(
                        db, industry.id, demand["aar_type_id"], session_number
                    ):
                        skipped += 1
                        continue

                    for _ in range(demand.get("cars_per_session", 0)):
                        order = CarOrder(
                            industry_id=industry.id,
                            aar_type_id=demand["aar_type_id"],
                            session_number=session_number,
                            status=CarOrderStatus.PENDING.value,
                            assigned_car_id=None,
                            assigned_train_id=None,
                            created_at=utcnow()
                        )
                        db.add(order)
                        created.append(order)

                processed.append({
                    "industry_id": industry.id,
                    "industry_name": industry.name,
                    "demand_configs": len(industry.car_demand_config)
                })

        logger.info(
            f"Generated {len(created)} car orders for session {session_number} "
            f"across {len(processed)} industries ({skipped} demand entries skipped as duplicates)"
        )

        return {
            "session_number": session_number,
            "total_orders_generated": len(created),
            "industries_processed": len(processed),
            "orders_by_industry": dict(Counter(o.industry_id for o in created)),
            "orders_by_aar_type": dict(Counter(o.aar_type_id for o in created)),
            "processed_industries": processed,
            "orders": [o.to_dict() for o in created]
        }

    @staticmethod
    def _has_open_order(db: Session, industry_id: str, aar_type_id: str, session_number: int) -> bool:
        return db.query(CarOrder).filter(
            CarOrder.industry_id == industry_id,
            CarOrder.aar_type_id == aar_type_id,
            CarOrder.session_number == session_number,
            CarOrder.status.in_(NON_TERMINAL_ORDER_STATUSES)
        ).first() is not None

    @staticmethod
    def revert_orders_for_train(db: Session, train_id: str) -> List[CarOrder]:
        """Stage every assigned/in-transit order of a train back to pending (no commit)."""
        reverted = []
        for order in entity_store.car_orders.find_by_query(db, assigned_train_id=train_id):
            if CarOrderStatus(order.status) in COMMITTED_ORDER_STATUSES:
                apply_order_event(order, CarOrderEvent.REVERT)
                reverted.append(order)
        return reverted

    @staticmethod
    def deliver_orders_for_train(db: Session, train_id: str) -> List[CarOrder]:
        """Stage every assigned/in-transit order of a train as delivered (no commit)."""
        delivered = []
        for order in entity_store.car_orders.find_by_query(db, assigned_train_id=train_id):
            if CarOrderStatus(order.status) in COMMITTED_ORDER_STATUSES:
                apply_order_event(order, CarOrderEvent.DELIVER)
                delivered.append(order)
        return delivered

    @staticmethod
    def list_orders(
        db: Session,
        industry_id: Optional[str] = None,
        status: Optional[str] = None,
        session_number: Optional[int] = None,
        aar_type_id: Optional[str] = None,
        search: Optional[str] = None
    ) -> List[CarOrder]:
        """Get car orders matching the filters, newest first."""
        query = db.query(CarOrder)
        if industry_id:
            query = query.filter(CarOrder.industry_id == industry_id)
        if status:
            query = query.filter(CarOrder.status == status)
        if session_number:
            query = query.filter(CarOrder.session_number == session_number)
        if aar_type_id:
            query = query.filter(CarOrder.aar_type_id == aar_type_id)
        orders = query.all()

        if search:
            needle = search.lower()
            names = {i.id: (i.name or "").lower() for i in entity_store.industries.find_all(db)}
            orders = [
                o for o in orders
                if needle in names.get(o.industry_id, "") or needle in o.aar_type_id.lower()
            ]

        orders.sort(key=lambda o: (o.created_at, o.id), reverse=True)
        return orders

    @staticmethod
    def get_enriched_order(db: Session, order_id: str) -> Dict[str, Any]:
        """Get a car order together with its industry, car and train."""
        order = entity_store.car_orders.get_or_404(db, order_id)
        industry = entity_store.industries.find_by_id(db, order.industry_id)
        car = entity_store.cars.find_by_id(db, order.assigned_car_id)
        train = entity_store.trains.find_by_id(db, order.assigned_train_id)

        data = order.to_dict()
        data["industry"] = industry.to_dict() if industry else None
        data["assigned_car"] = car.to_dict() if car else None
        data["assigned_train"] = train.to_dict() if train else None
        return data

    @staticmethod
    def create_order(
        db: Session,
        industry_id: str,
        aar_type_id: str,
        session_number: Optional[int] = None
    ) -> CarOrder:
        """Create a single pending car order."""
        if entity_store.industries.find_by_id(db, industry_id) is None:
            raise NotFoundError(f"Industry with ID '{industry_id}' does not exist")
        session_number = CarOrderService.resolve_session_number(db, session_number)

        duplicate = db.query(CarOrder).filter(
            CarOrder.industry_id == industry_id,
            CarOrder.aar_type_id == aar_type_id,
            CarOrder.session_number == session_number,
            CarOrder.status == CarOrderStatus.PENDING.value
        ).first()
        if duplicate is not None:
            raise ConflictError(
                "Duplicate order detected",
                f"A pending {aar_type_id} order for {industry_id} already exists in session {session_number}"
            )

        return entity_store.car_orders.create(
            db,
            industry_id=industry_id,
            aar_type_id=aar_type_id,
            session_number=session_number,
            status=CarOrderStatus.PENDING.value
        )

    @staticmethod
    def update_order(db: Session, order_id: str, **changes: Any) -> CarOrder:
        """
        Update an order's status and assignment.

        Status changes must follow the car order state machine; assigning a car
        requires a pending order and an in-service car of the ordered type that
        no other open order holds.
        """
        order = entity_store.car_orders.get_or_404(db, order_id)

        with unit_of_work(db, "update car order"):
            car_id = changes.get("assigned_car_id")
            if car_id and car_id != order.assigned_car_id:
                car = CarOrderService._validate_car_assignment(db, order, car_id)
                # Claim the car so a switch list planned around it fails its version check.
                flag_modified(car, "sessions_at_current_location")
                order.assigned_car_id = car_id
            if "assigned_train_id" in changes and changes["assigned_train_id"] != order.assigned_train_id:
                train_id = changes["assigned_train_id"]
                if train_id is not None:
                    entity_store.trains.get_or_404(db, train_id)
                order.assigned_train_id = train_id

            target = changes.get("status")
            if target and target != order.status:
                event = order_event_for(order.status, target)
                if event is None:
                    raise InvalidTransitionError(
                        "Invalid status transition",
                        f"Cannot move car order from {order.status} to {target}"
                    )
                apply_order_event(order, event)

            if CarOrderStatus(order.status) in COMMITTED_ORDER_STATUSES and not (
                order.assigned_car_id and order.assigned_train_id
            ):
                raise BadRequestError(
                    f"A car order with status '{order.status}' must reference a car and a train"
                )

        db.refresh(order)
        logger.info(f"Updated car order {order_id} (status: {order.status})")
        return order

    @staticmethod
    def _validate_car_assignment(db: Session, order: CarOrder, car_id: str) -> Car:
        car = entity_store.cars.find_by_id(db, car_id)
        errors = []
        if car is None:
            raise NotFoundError("Car not found", {"id": car_id})
        if not car.is_in_service:
            errors.append("Car is not in service")
        if car.car_type != order.aar_type_id:
            errors.append(f"Car type mismatch: order requires {order.aar_type_id}, car is {car.car_type}")
        if order.status != CarOrderStatus.PENDING.value:
            errors.append(f"Cannot assign car to order with status: {order.status}")
        if errors:
            raise BadRequestError("Invalid car assignment", errors)

        holder = db.query(CarOrder).filter(
            CarOrder.assigned_car_id == car_id,
            CarOrder.id != order.id,
            CarOrder.status.in_([s.value for s in COMMITTED_ORDER_STATUSES])
        ).first()
        if holder is not None:
            raise ConflictError(f"Car {car_id} is already assigned to car order {holder.id}")
        return car

    @staticmethod
    def delete_order(db: Session, order_id: str) -> None:
        """Delete an order that does not hold a car."""
        order = entity_store.car_orders.get_or_404(db, order_id)
        if CarOrderStatus(order.status) in COMMITTED_ORDER_STATUSES:
            raise ConflictError(
                f"Cannot delete car order with status '{order.status}'. "
                "Only pending or delivered orders can be deleted."
            )
        entity_store.car_orders.delete(db, order_id)

    @staticmethod
    def order_stats(db: Session, session_number: Optional[int] = None) -> Dict[str, Any]:
        """Order counts by status and AAR type for a session (current one by default)."""
        if session_number is None:
            current = entity_store.find_current_session(db)
            session_number = current.current_session_number if current else None

        if session_number is not None:
            orders = entity_store.car_orders.find_by_query(db, session_number=session_number)
        else:
            orders = entity_store.car_orders.find_all(db)

        by_status = Counter(o.status for o in orders)
        return {
            "session_number": session_number,
            "total_orders": len(orders),
            "orders_by_status": dict(by_status),
            "orders_by_aar_type": dict(Counter(o.aar_type_id for o in orders)),
            "pending_orders": by_status.get(CarOrderStatus.PENDING.value, 0),
            "assigned_orders": by_status.get(CarOrderStatus.ASSIGNED.value, 0),
            "delivered_orders": by_status.get(CarOrderStatus.DELIVERED.value, 0)
        }
