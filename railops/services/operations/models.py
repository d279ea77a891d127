"""
SQLAlchemy ORM models for layout entities, trains, car orders and the operating session.
"""
import copy
from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, JSON
from sqlalchemy.orm import relationship

from railops.services.operations.database import Base
from railops.services.operations.state_machine import CarOrderStatus, TrainStatus
from railops.utils.helpers import new_id, parse_timestamp, utcnow


class SnapshotMixin:
    """Row <-> plain dict conversion used by session snapshots and API payloads."""

    # Concurrency tokens are not part of an entity's state.
    __snapshot_exclude__ = frozenset({"version"})

    def to_dict(self) -> dict:
        data = {}
        for column in self.__table__.columns:
            if column.key in self.__snapshot_exclude__:
                continue
            value = getattr(self, column.key)
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, (dict, list)):
                value = copy.deepcopy(value)
            data[column.key] = value
        return data

    @classmethod
    def from_dict(cls, data: dict):
        values = {}
        for column in cls.__table__.columns:
            if column.key in cls.__snapshot_exclude__ or column.key not in data:
                continue
            value = data[column.key]
            if isinstance(column.type, DateTime):
                value = parse_timestamp(value)
            elif isinstance(value, (dict, list)):
                value = copy.deepcopy(value)
            values[column.key] = value
        return cls(**values)


class Station(SnapshotMixin, Base):
    """A named place on the layout; industries sit at stations."""
    __tablename__ = "stations"

    id = Column(String(64), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    industries = relationship("Industry", back_populates="station")


class Industry(SnapshotMixin, Base):
    """A shipper/receiver (or a yard) located at a station."""
    __tablename__ = "industries"

    id = Column(String(64), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    station_id = Column(String(64), ForeignKey("stations.id"), nullable=False, index=True)
    is_yard = Column(Boolean, default=False)
    car_demand_config = Column(JSON, nullable=False, default=list)  # List of {aar_type_id, cars_per_session, frequency}
    created_at = Column(DateTime, default=utcnow)

    station = relationship("Station", back_populates="industries")


class Route(SnapshotMixin, Base):
    """Yard-to-yard route visiting an ordered list of stations."""
    __tablename__ = "routes"

    id = Column(String(64), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    origin_yard_id = Column(String(64), ForeignKey("industries.id"), nullable=False)
    termination_yard_id = Column(String(64), ForeignKey("industries.id"), nullable=False)
    station_sequence = Column(JSON, nullable=False, default=list)  # Ordered station ids, may be empty
    created_at = Column(DateTime, default=utcnow)


class Locomotive(SnapshotMixin, Base):
    """Motive power record; only its existence and service flag matter to operations."""
    __tablename__ = "locomotives"

    id = Column(String(64), primary_key=True, default=new_id)
    reporting_marks = Column(String(10), nullable=False)
    reporting_number = Column(String(10), nullable=False)
    model = Column(String(50), nullable=True)
    is_in_service = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)


class Car(SnapshotMixin, Base):
    """A piece of rolling stock sitting at an industry."""
    __tablename__ = "cars"

    id = Column(String(64), primary_key=True, default=new_id)
    reporting_marks = Column(String(10), nullable=False)
    reporting_number = Column(String(10), nullable=False)
    car_type = Column(String(50), nullable=False, index=True)  # AAR type id
    current_industry_id = Column(String(64), ForeignKey("industries.id"), nullable=False, index=True)
    home_yard_id = Column(String(64), ForeignKey("industries.id"), nullable=False)
    is_in_service = Column(Boolean, default=True)
    sessions_at_current_location = Column(Integer, nullable=False, default=0)
    last_moved = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class Train(SnapshotMixin, Base):
    """A train run for one operating session."""
    __tablename__ = "trains"

    id = Column(String(64), primary_key=True, default=new_id)
    name = Column(String(100), nullable=False)
    route_id = Column(String(64), ForeignKey("routes.id"), nullable=False)
    session_number = Column(Integer, nullable=False, index=True)
    status = Column(String(20), nullable=False, default=TrainStatus.PLANNED.value, index=True)
    locomotive_ids = Column(JSON, nullable=False, default=list)
    max_capacity = Column(Integer, nullable=False)
    assigned_car_ids = Column(JSON, nullable=False, default=list)
    switch_list = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class CarOrder(SnapshotMixin, Base):
    """Demand for one car of an AAR type at an industry in a given session."""
    __tablename__ = "car_orders"

    id = Column(String(64), primary_key=True, default=new_id)
    industry_id = Column(String(64), ForeignKey("industries.id"), nullable=False, index=True)
    aar_type_id = Column(String(50), nullable=False)
    session_number = Column(Integer, nullable=False, index=True)
    status = Column(String(20), nullable=False, default=CarOrderStatus.PENDING.value, index=True)
    # Plain references: completed trains are deleted on session advance while
    # their delivered orders stay behind.
    assigned_car_id = Column(String(64), nullable=True)
    assigned_train_id = Column(String(64), nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class OperatingSession(SnapshotMixin, Base):
    """The singleton session record, with the single-level undo snapshot."""
    __tablename__ = "operating_sessions"

    id = Column(String(64), primary_key=True, default=new_id)
    current_session_number = Column(Integer, nullable=False, default=1)
    session_date = Column(DateTime, nullable=False, default=utcnow)
    description = Column(String(500), nullable=False, default="")
    previous_session_snapshot = Column(JSON, nullable=True)  # {session_number, taken_at, cars, trains, car_orders}
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
