from collections.abc import Generator
from datetime import datetime, timedelta
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from railops.main import app
from railops.services.operations.database import Base, create_db_engine, get_db_session
from railops.services.operations.models import (
    Car, CarOrder, Industry, Locomotive, OperatingSession, Route, Station, Train
)
from railops.services.operations.state_machine import CarOrderStatus, TrainStatus

BASE_TIME = datetime(2024, 1, 1, 8, 0, 0)


@pytest.fixture
def engine():
    """Fresh in-memory database per test."""
    test_engine = create_db_engine("sqlite://")
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


class LayoutFactory:
    """
    Seeds a small layout:

        yard1 (Eastport) -> station-1 (Millville: lumber-mill, team-track) -> yard2 (Westfield)
    """

    def __init__(self, db: Session):
        self.db = db
        self._tick = 0

    def _next_time(self) -> datetime:
        self._tick += 1
        return BASE_TIME + timedelta(minutes=self._tick)

    def seed(self, session_number: int = 1) -> "LayoutFactory":
        db = self.db
        db.add_all([
            Station(id="eastport", name="Eastport"),
            Station(id="station-1", name="Millville"),
            Station(id="westfield", name="Westfield"),
            Station(id="station-empty", name="Junction"),
        ])
        db.flush()
        db.add_all([
            Industry(id="yard1", name="Eastport Yard", station_id="eastport", is_yard=True, car_demand_config=[]),
            Industry(id="yard2", name="Westfield Yard", station_id="westfield", is_yard=True, car_demand_config=[]),
            Industry(
                id="lumber-mill", name="Millville Lumber", station_id="station-1", is_yard=False,
                car_demand_config=[{"aar_type_id": "flatcar", "cars_per_session": 2, "frequency": 1}]
            ),
            Industry(
                id="team-track", name="Millville Team Track", station_id="station-1", is_yard=False,
                car_demand_config=[{"aar_type_id": "boxcar", "cars_per_session": 1, "frequency": 2}]
            ),
        ])
        db.flush()
        db.add_all([
            Route(
                id="route-1", name="East-West Local", origin_yard_id="yard1",
                termination_yard_id="yard2", station_sequence=["station-1"]
            ),
            Locomotive(id="loco-1", reporting_marks="ATSF", reporting_number="2301", is_in_service=True),
            Locomotive(id="loco-2", reporting_marks="ATSF", reporting_number="2302", is_in_service=True),
            Locomotive(id="loco-shop", reporting_marks="ATSF", reporting_number="9999", is_in_service=False),
            OperatingSession(
                id="session", current_session_number=session_number,
                session_date=BASE_TIME, description="Initial operating session"
            ),
        ])
        db.commit()
        return self

    def car(self, car_id: str, car_type: str = "flatcar", at: str = "yard1",
            home: str = "yard1", in_service: bool = True) -> Car:
        car = Car(
            id=car_id, reporting_marks="ATSF", reporting_number=car_id[-4:], car_type=car_type,
            current_industry_id=at, home_yard_id=home, is_in_service=in_service,
            sessions_at_current_location=0, created_at=self._next_time()
        )
        self.db.add(car)
        self.db.commit()
        return car

    def order(self, order_id: str, industry_id: str = "lumber-mill", aar_type_id: str = "flatcar",
              session_number: int = 1) -> CarOrder:
        order = CarOrder(
            id=order_id, industry_id=industry_id, aar_type_id=aar_type_id,
            session_number=session_number, status=CarOrderStatus.PENDING.value,
            created_at=self._next_time()
        )
        self.db.add(order)
        self.db.commit()
        return order

    def train(self, train_id: str = "local-123", name: str = "Local 123", max_capacity: int = 20,
              session_number: int = 1, status: str = TrainStatus.PLANNED.value,
              locomotive_ids: Optional[list] = None, route_id: str = "route-1") -> Train:
        train = Train(
            id=train_id, name=name, route_id=route_id, session_number=session_number,
            status=status, locomotive_ids=locomotive_ids or ["loco-1"],
            max_capacity=max_capacity, assigned_car_ids=[], created_at=self._next_time()
        )
        self.db.add(train)
        self.db.commit()
        return train


@pytest.fixture
def layout(db) -> LayoutFactory:
    return LayoutFactory(db).seed()


@pytest.fixture
def client(session_factory) -> Generator[TestClient, None, None]:
    def override_get_db_session():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db_session] = override_get_db_session
    yield TestClient(app)
    app.dependency_overrides.clear()
