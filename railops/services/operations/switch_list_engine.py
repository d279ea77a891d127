"""
Switch list generation for planned trains.

Generation runs in two phases. plan_switch_list() is a pure function over
immutable views of the route walk, the cars sitting along it and the pending
orders for the train's session. The commit phase then re-reads every row the
plan touches, checks nothing moved since the views were taken, and applies the
train and order updates in a single transaction. A plan invalidated by a
concurrent writer is recomputed from fresh data.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from railops.config import settings
from railops.exceptions import BadRequestError, ConflictError, InvalidTransitionError, NotFoundError
from railops.services.operations import entity_store
from railops.services.operations.entity_store import unit_of_work
from railops.services.operations.locks import operation_locks
from railops.services.operations.models import Car, CarOrder, Route, Train
from railops.services.operations.order_service import apply_order_event
from railops.services.operations.state_machine import (
    COMMITTED_ORDER_STATUSES, CarOrderEvent, CarOrderStatus, TrainEvent, TrainStatus, transition
)
from railops.utils.helpers import get_timestamp

logger = logging.getLogger(__name__)


# ==================== PLAN INPUTS ====================

@dataclass(frozen=True)
class Stop:
    """One stop of the route walk: a yard endpoint or an intermediate station."""
    index: int
    station_id: str
    station_name: str
    is_yard: bool
    industry_ids: Tuple[str, ...]


@dataclass(frozen=True)
class CarView:
    id: str
    reporting_marks: str
    reporting_number: str
    car_type: str
    current_industry_id: str
    home_yard_id: str
    created_at: Optional[datetime]
    version: int

    @classmethod
    def from_model(cls, car: Car) -> "CarView":
        return cls(
            id=car.id,
            reporting_marks=car.reporting_marks,
            reporting_number=car.reporting_number,
            car_type=car.car_type,
            current_industry_id=car.current_industry_id,
            home_yard_id=car.home_yard_id,
            created_at=car.created_at,
            version=car.version
        )


@dataclass(frozen=True)
class OrderView:
    id: str
    industry_id: str
    aar_type_id: str
    created_at: Optional[datetime]
    version: int

    @classmethod
    def from_model(cls, order: CarOrder) -> "OrderView":
        return cls(
            id=order.id,
            industry_id=order.industry_id,
            aar_type_id=order.aar_type_id,
            created_at=order.created_at,
            version=order.version
        )


def _fifo_key(view) -> Tuple[datetime, str]:
    return (view.created_at or datetime.min, view.id)


# ==================== PLAN ====================

@dataclass(frozen=True)
class PlannedMove:
    """A car picked up at one stop and set out at the same or a later stop."""
    car: CarView
    pickup_stop: int
    setout_stop: int
    destination_industry_id: str
    destination_industry_name: str
    order: Optional[OrderView] = None

    def as_item(self) -> Dict[str, Any]:
        return {
            "car_id": self.car.id,
            "car_reporting_marks": self.car.reporting_marks,
            "car_reporting_number": self.car.reporting_number,
            "car_type": self.car.car_type,
            "destination_industry_id": self.destination_industry_id,
            "destination_industry_name": self.destination_industry_name,
            "car_order_id": self.order.id if self.order else None
        }


@dataclass
class SwitchListPlan:
    stops: List[Stop]
    moves: List[PlannedMove] = field(default_factory=list)
    capacity_reached: bool = False

    @property
    def assigned_car_ids(self) -> List[str]:
        return [move.car.id for move in self.moves]

    @property
    def order_moves(self) -> List[PlannedMove]:
        return [move for move in self.moves if move.order is not None]

    def to_switch_list(self) -> Dict[str, Any]:
        """Render the plan as the switch list stored on the train."""
        visits = [
            {
                "station_id": stop.station_id,
                "station_name": stop.station_name,
                "is_yard": stop.is_yard,
                "pickups": [],
                "setouts": []
            }
            for stop in self.stops
        ]
        for move in self.moves:
            visits[move.pickup_stop]["pickups"].append(move.as_item())
            visits[move.setout_stop]["setouts"].append(move.as_item())

        load = 0
        max_load = 0
        for visit in visits:
            load += len(visit["pickups"])
            max_load = max(max_load, load)
            load -= len(visit["setouts"])

        total_pickups = sum(len(v["pickups"]) for v in visits)
        total_setouts = sum(len(v["setouts"]) for v in visits)
        return {
            "stations": visits,
            "total_pickups": total_pickups,
            "total_setouts": total_setouts,
            "final_car_count": total_pickups - total_setouts,
            "max_load": max_load,
            "generated_at": get_timestamp()
        }


def plan_switch_list(
    stops: Sequence[Stop],
    cars: Sequence[CarView],
    orders: Sequence[OrderView],
    industry_names: Dict[str, str],
    max_capacity: int,
    return_empties_home: bool = False
) -> SwitchListPlan:
    """
    Match cars along the walk to pending orders.

    At each stop, cars sitting at the stop's industries are taken oldest first
    and matched to the oldest pending order of the same AAR type whose
    destination lies at this stop or further along the walk. The setout goes
    to the first stop at or after the pickup holding the destination. No
    pickups are added once max_capacity cars are assigned.

    With return_empties_home, unmatched cars whose home yard lies ahead are
    picked up for the trip home without an order.
    """
    plan = SwitchListPlan(stops=list(stops))

    stops_by_industry: Dict[str, List[int]] = defaultdict(list)
    for stop in stops:
        for industry_id in stop.industry_ids:
            stops_by_industry[industry_id].append(stop.index)

    def stop_at_or_after(industry_id: str, index: int) -> Optional[int]:
        for candidate in stops_by_industry.get(industry_id, ()):
            if candidate >= index:
                return candidate
        return None

    open_orders = sorted(orders, key=_fifo_key)
    remaining_cars = sorted(cars, key=_fifo_key)
    picked = set()

    for stop in stops:
        if len(plan.moves) >= max_capacity:
            plan.capacity_reached = True
            break

        here = set(stop.industry_ids)
        unmatched = []
        for car in remaining_cars:
            if car.id in picked or car.current_industry_id not in here:
                continue
            if len(plan.moves) >= max_capacity:
                plan.capacity_reached = True
                break

            match = None
            setout_stop = None
            for order in open_orders:
                if order.aar_type_id != car.car_type:
                    continue
                setout_stop = stop_at_or_after(order.industry_id, stop.index)
                if setout_stop is not None:
                    match = order
                    break

            if match is None:
                unmatched.append(car)
                continue

            open_orders.remove(match)
            picked.add(car.id)
            plan.moves.append(PlannedMove(
                car=car,
                pickup_stop=stop.index,
                setout_stop=setout_stop,
                destination_industry_id=match.industry_id,
                destination_industry_name=industry_names.get(match.industry_id, match.industry_id),
                order=match
            ))

        if not return_empties_home:
            continue

        for car in unmatched:
            if len(plan.moves) >= max_capacity:
                plan.capacity_reached = True
                break
            if car.home_yard_id == car.current_industry_id:
                continue
            home_stop = stop_at_or_after(car.home_yard_id, stop.index)
            if home_stop is None:
                continue
            picked.add(car.id)
            plan.moves.append(PlannedMove(
                car=car,
                pickup_stop=stop.index,
                setout_stop=home_stop,
                destination_industry_id=car.home_yard_id,
                destination_industry_name=industry_names.get(car.home_yard_id, car.home_yard_id)
            ))

    return plan


class StalePlanError(ConflictError):
    """Rows a plan relied on changed before it could be committed."""


# ==================== ENGINE ====================

class SwitchListEngine:
    """Builds switch lists and moves trains from Planned to In Progress."""

    @staticmethod
    def validate_switch_list_requirements(db: Session, train: Train) -> Tuple[Route, List[Stop]]:
        """
        Check the train's route and locomotives before anything is written.

        Returns:
            The route and its walk

        Raises:
            NotFoundError: Route or a locomotive does not exist
            BadRequestError: Inactive locomotives or a malformed route
        """
        route = entity_store.routes.find_by_id(db, train.route_id)
        if route is None:
            raise NotFoundError("Route not found", {"route_id": train.route_id})

        errors = []
        if not train.locomotive_ids:
            errors.append("No locomotives found for this train")
        for locomotive_id in train.locomotive_ids or []:
            locomotive = entity_store.locomotives.find_by_id(db, locomotive_id)
            if locomotive is None:
                raise NotFoundError(f"Locomotive with ID '{locomotive_id}' does not exist")
            if not locomotive.is_in_service:
                errors.append(
                    f"Inactive locomotive: {locomotive.reporting_marks} {locomotive.reporting_number}"
                )

        for label, yard_id in (("Origin", route.origin_yard_id), ("Termination", route.termination_yard_id)):
            yard = entity_store.industries.find_by_id(db, yard_id)
            if yard is None:
                errors.append(f"{label} yard '{yard_id}' does not exist")
            elif not yard.is_yard:
                errors.append(f"{label} industry '{yard.name}' is not a yard")

        for station_id in route.station_sequence or []:
            if entity_store.stations.find_by_id(db, station_id) is None:
                errors.append(f"Route references unknown station '{station_id}'")

        if errors:
            logger.warning(f"Switch list validation failed for train {train.name}: {errors}")
            raise BadRequestError("Cannot generate switch list", errors)

        return route, SwitchListEngine.build_walk(db, route)

    @staticmethod
    def build_walk(db: Session, route: Route) -> List[Stop]:
        """Origin yard, each station in sequence, termination yard."""
        origin = entity_store.industries.get_or_404(db, route.origin_yard_id)
        termination = entity_store.industries.get_or_404(db, route.termination_yard_id)

        stops = [Stop(0, origin.station_id, origin.name, True, (origin.id,))]
        for station_id in route.station_sequence or []:
            station = entity_store.stations.get_or_404(db, station_id)
            industry_ids = tuple(sorted(i.id for i in entity_store.industries.find_by_query(db, station_id=station_id)))
            stops.append(Stop(len(stops), station.id, station.name, False, industry_ids))
        stops.append(Stop(len(stops), termination.station_id, termination.name, True, (termination.id,)))
        return stops

    @staticmethod
    def _committed_car_ids(db: Session, train_id: str) -> set:
        """Cars held by an open order or by another train already under way."""
        held = {
            order.assigned_car_id
            for order in entity_store.car_orders.find_by_query(
                db, status=[s.value for s in COMMITTED_ORDER_STATUSES]
            )
            if order.assigned_car_id
        }
        for other in entity_store.trains.find_by_query(db, status=TrainStatus.IN_PROGRESS.value):
            if other.id != train_id:
                held.update(other.assigned_car_ids or [])
        return held

    @staticmethod
    def build_plan(db: Session, train: Train, stops: List[Stop], return_empties_home: bool) -> SwitchListPlan:
        """Read the cars and orders along the walk and compute the plan."""
        walk_industries = sorted({iid for stop in stops for iid in stop.industry_ids})
        held = SwitchListEngine._committed_car_ids(db, train.id)

        cars = [
            CarView.from_model(car)
            for car in entity_store.cars.find_by_query(db, is_in_service=True, current_industry_id=walk_industries)
            if car.id not in held
        ]
        orders = [
            OrderView.from_model(order)
            for order in entity_store.car_orders.find_by_query(
                db,
                status=CarOrderStatus.PENDING.value,
                session_number=train.session_number,
                industry_id=walk_industries
            )
        ]
        named_ids = set(walk_industries) | {car.home_yard_id for car in cars}
        industry_names = {
            industry.id: industry.name
            for industry in entity_store.industries.find_by_query(db, id=sorted(named_ids))
        }

        return plan_switch_list(
            stops, cars, orders, industry_names, train.max_capacity, return_empties_home=return_empties_home
        )

    @staticmethod
    def _commit_plan(db: Session, train: Train, train_version: int, plan: SwitchListPlan, next_status: TrainStatus) -> None:
        """Re-validate every row the plan touches, then stage the updates."""
        db.refresh(train)
        if train.version != train_version or train.status != TrainStatus.PLANNED.value:
            raise StalePlanError(f"Train {train.id} changed while its switch list was being planned")

        for move in plan.moves:
            car = db.get(Car, move.car.id)
            if car is None:
                raise StalePlanError(f"Car {move.car.id} disappeared during planning")
            db.refresh(car)
            if car.version != move.car.version or car.current_industry_id != move.car.current_industry_id \
                    or not car.is_in_service:
                raise StalePlanError(f"Car {car.id} changed during planning")
            holder = db.query(CarOrder).filter(
                CarOrder.assigned_car_id == car.id,
                CarOrder.status.in_([s.value for s in COMMITTED_ORDER_STATUSES])
            ).first()
            if holder is not None:
                raise StalePlanError(f"Car {car.id} was assigned to car order {holder.id} during planning")
            # Claim the car: bumps its version so a competing plan using it fails at flush.
            flag_modified(car, "sessions_at_current_location")

            if move.order is None:
                continue
            order = db.get(CarOrder, move.order.id)
            if order is None:
                raise StalePlanError(f"Car order {move.order.id} disappeared during planning")
            db.refresh(order)
            if order.version != move.order.version or order.status != CarOrderStatus.PENDING.value:
                raise StalePlanError(f"Car order {order.id} changed during planning")
            apply_order_event(order, CarOrderEvent.ASSIGN)
            order.assigned_car_id = car.id
            order.assigned_train_id = train.id

        train.switch_list = plan.to_switch_list()
        train.assigned_car_ids = plan.assigned_car_ids
        train.status = next_status.value

    @staticmethod
    def generate_switch_list(
        db: Session,
        train_id: str,
        max_attempts: Optional[int] = None,
        return_empties_home: Optional[bool] = None
    ) -> Tuple[Train, Dict[str, Any]]:
        """
        Generate the switch list for a Planned train and put it In Progress.

        Args:
            db: Database session
            train_id: Train to generate for
            max_attempts: Plan/commit attempts before giving up (settings default)
            return_empties_home: Route unmatched cars to their home yard (settings default)

        Returns:
            Updated train and generation stats
        """
        attempts = max_attempts or settings.switch_list_max_attempts
        if return_empties_home is None:
            return_empties_home = settings.return_empties_to_home_yard

        logger.info(f"Generating switch list for train {train_id}")
        with operation_locks.train(train_id):
            for attempt in range(1, attempts + 1):
                db.expire_all()
                train = entity_store.trains.get_or_404(db, train_id)

                result = transition(train.status, TrainEvent.GENERATE_SWITCH_LIST)
                if not result.allowed:
                    logger.warning(
                        f"Switch list generation refused for train {train.name}: status {train.status}"
                    )
                    raise InvalidTransitionError(result.reason, {"train_id": train_id, "status": train.status})

                route, stops = SwitchListEngine.validate_switch_list_requirements(db, train)
                train_version = train.version
                plan = SwitchListEngine.build_plan(db, train, stops, return_empties_home)

                try:
                    with unit_of_work(db, "generate switch list"):
                        SwitchListEngine._commit_plan(db, train, train_version, plan, result.next_status)
                except ConflictError as e:
                    logger.warning(f"Switch list attempt {attempt}/{attempts} for train {train_id} conflicted: {e.message}")
                    continue

                db.refresh(train)
                switch_list = train.switch_list
                stats = {
                    "stations_served": len(switch_list["stations"]),
                    "cars_assigned": len(train.assigned_car_ids),
                    "total_pickups": switch_list["total_pickups"],
                    "total_setouts": switch_list["total_setouts"],
                    "final_car_count": switch_list["final_car_count"],
                    "car_orders_fulfilled": len(plan.order_moves)
                }
                logger.info(
                    f"Switch list generated for train {train.name} on route {route.name}: "
                    f"{stats['total_pickups']} pickups, {stats['total_setouts']} setouts, "
                    f"{stats['cars_assigned']}/{train.max_capacity} cars"
                )
                return train, stats

        raise ConflictError(
            "Switch list generation conflicted with concurrent changes",
            {"train_id": train_id, "attempts": attempts}
        )
