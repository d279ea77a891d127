"""
Service for seeding and reading layout entities (stations, industries, routes, cars, locomotives).
"""
import logging
from typing import Any, Dict, List
from sqlalchemy.orm import Session

from railops.exceptions import BadRequestError, NotFoundError
from railops.services.operations import entity_store
from railops.services.operations.entity_store import EntityStore
from railops.services.operations.models import Car, Industry, Locomotive, Route, Station

logger = logging.getLogger(__name__)

LAYOUT_STORES: Dict[str, EntityStore] = {
    "stations": entity_store.stations,
    "industries": entity_store.industries,
    "routes": entity_store.routes,
    "cars": entity_store.cars,
    "locomotives": entity_store.locomotives,
}


class LayoutService:
    """Service for layout entity creation and lookup."""

    @staticmethod
    def _require(store: EntityStore, db: Session, entity_id: str, field: str):
        entity = store.find_by_id(db, entity_id)
        if entity is None:
            raise NotFoundError(f"{store.label} with ID '{entity_id}' does not exist", {"field": field})
        return entity

    @staticmethod
    def _require_yard(db: Session, industry_id: str, field: str) -> Industry:
        industry = LayoutService._require(entity_store.industries, db, industry_id, field)
        if not industry.is_yard:
            raise BadRequestError(f"Industry '{industry.name}' is not a yard", {"field": field})
        return industry

    @staticmethod
    def create_station(db: Session, **fields: Any) -> Station:
        """Create a station."""
        return entity_store.stations.create(db, **fields)

    @staticmethod
    def create_industry(db: Session, **fields: Any) -> Industry:
        """Create an industry at an existing station."""
        LayoutService._require(entity_store.stations, db, fields.get("station_id"), "station_id")
        fields["car_demand_config"] = [dict(entry) for entry in fields.get("car_demand_config") or []]
        return entity_store.industries.create(db, **fields)

    @staticmethod
    def create_route(db: Session, **fields: Any) -> Route:
        """Create a yard-to-yard route over existing stations."""
        LayoutService._require_yard(db, fields.get("origin_yard_id"), "origin_yard_id")
        LayoutService._require_yard(db, fields.get("termination_yard_id"), "termination_yard_id")
        sequence = list(fields.get("station_sequence") or [])
        for station_id in sequence:
            LayoutService._require(entity_store.stations, db, station_id, "station_sequence")
        fields["station_sequence"] = sequence
        return entity_store.routes.create(db, **fields)

    @staticmethod
    def create_locomotive(db: Session, **fields: Any) -> Locomotive:
        """Create a locomotive."""
        return entity_store.locomotives.create(db, **fields)

    @staticmethod
    def create_car(db: Session, **fields: Any) -> Car:
        """Create a car at an existing industry with a yard as its home."""
        LayoutService._require(entity_store.industries, db, fields.get("current_industry_id"), "current_industry_id")
        LayoutService._require_yard(db, fields.get("home_yard_id"), "home_yard_id")
        return entity_store.cars.create(db, **fields)

    @staticmethod
    def list_entities(db: Session, kind: str) -> List[Any]:
        """All entities of one layout kind."""
        return LAYOUT_STORES[kind].find_all(db)

    @staticmethod
    def get_entity(db: Session, kind: str, entity_id: str) -> Any:
        """One layout entity by ID or NotFoundError."""
        return LAYOUT_STORES[kind].get_or_404(db, entity_id)
