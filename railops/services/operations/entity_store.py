"""
Keyed lookup and persistence for operations entities.
"""
import logging
from contextlib import contextmanager
from typing import Any, Generic, List, Optional, Type, TypeVar
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from railops.exceptions import ConflictError, InternalError, NotFoundError, OperationsError
from railops.services.operations.models import (
    Car, CarOrder, Industry, Locomotive, OperatingSession, Route, Station, Train
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT")


class EntityStore(Generic[ModelT]):
    """CRUD operations for one ORM model."""

    def __init__(self, model: Type[ModelT], label: str):
        self.model = model
        self.label = label

    def find_by_id(self, db: Session, entity_id: str) -> Optional[ModelT]:
        """Get an entity by ID."""
        if entity_id is None:
            return None
        return db.get(self.model, entity_id)

    def get_or_404(self, db: Session, entity_id: str) -> ModelT:
        """Get an entity by ID or raise NotFoundError."""
        entity = self.find_by_id(db, entity_id)
        if entity is None:
            raise NotFoundError(f"{self.label} not found", {"id": entity_id})
        return entity

    def find_all(self, db: Session) -> List[ModelT]:
        """Get all entities."""
        return db.query(self.model).all()

    def find_by_query(self, db: Session, **filters: Any) -> List[ModelT]:
        """Get entities whose columns equal the given values; list values match any member."""
        query = db.query(self.model)
        for key, value in filters.items():
            column = getattr(self.model, key)
            if isinstance(value, (list, tuple, set, frozenset)):
                query = query.filter(column.in_(list(value)))
            else:
                query = query.filter(column == value)
        return query.all()

    def create(self, db: Session, **fields: Any) -> ModelT:
        """Create and commit a new entity."""
        try:
            entity = self.model(**fields)
            db.add(entity)
            db.commit()
            db.refresh(entity)
            logger.info(f"Created {self.label.lower()} {entity.id}")
            return entity
        except IntegrityError as e:
            db.rollback()
            logger.error(f"{self.label} creation failed (integrity error): {str(e)}")
            raise ConflictError(f"{self.label} conflicts with existing data")
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"{self.label} creation failed: {str(e)}")
            raise InternalError(f"Failed to create {self.label.lower()}")

    def update(self, db: Session, entity_id: str, **fields: Any) -> Optional[ModelT]:
        """Update and commit an entity; returns None when absent."""
        entity = self.find_by_id(db, entity_id)
        if not entity:
            return None

        try:
            for key, value in fields.items():
                if hasattr(entity, key):
                    setattr(entity, key, value)
            db.commit()
            db.refresh(entity)
            logger.info(f"Updated {self.label.lower()} {entity_id}")
            return entity
        except StaleDataError:
            db.rollback()
            raise ConflictError(f"{self.label} was modified concurrently", {"id": entity_id})
        except IntegrityError as e:
            db.rollback()
            logger.error(f"{self.label} update failed (integrity error): {str(e)}")
            raise ConflictError(f"{self.label} conflicts with existing data")
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"{self.label} update failed: {str(e)}")
            raise InternalError(f"Failed to update {self.label.lower()}")

    def delete(self, db: Session, entity_id: str) -> bool:
        """Delete an entity; returns False when absent."""
        entity = self.find_by_id(db, entity_id)
        if not entity:
            return False

        try:
            db.delete(entity)
            db.commit()
            logger.info(f"Deleted {self.label.lower()} {entity_id}")
            return True
        except StaleDataError:
            db.rollback()
            raise ConflictError(f"{self.label} was modified concurrently", {"id": entity_id})
        except IntegrityError as e:
            db.rollback()
            logger.error(f"{self.label} deletion failed (integrity error): {str(e)}")
            raise ConflictError(f"{self.label} is still referenced")
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"{self.label} deletion failed: {str(e)}")
            raise InternalError(f"Failed to delete {self.label.lower()}")


@contextmanager
def unit_of_work(db: Session, operation: str):
    """
    Commit everything staged inside the block once, or roll all of it back.

    Args:
        db: Session the block stages its changes on
        operation: Short description used in log lines and error messages

    Raises:
        ConflictError: A version check failed (another writer got there first)
        InternalError: Any other persistence failure
    """
    try:
        yield
        db.commit()
    except OperationsError:
        db.rollback()
        raise
    except StaleDataError as e:
        db.rollback()
        logger.warning(f"Concurrent modification during {operation}: {str(e)}")
        raise ConflictError(f"Concurrent modification detected while trying to {operation}")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Persistence failure during {operation}: {str(e)}")
        raise InternalError(f"Failed to {operation}")
    except Exception:
        db.rollback()
        raise


stations = EntityStore(Station, "Station")
industries = EntityStore(Industry, "Industry")
routes = EntityStore(Route, "Route")
locomotives = EntityStore(Locomotive, "Locomotive")
cars = EntityStore(Car, "Car")
trains = EntityStore(Train, "Train")
car_orders = EntityStore(CarOrder, "Car order")
operating_sessions = EntityStore(OperatingSession, "Operating session")


def find_current_session(db: Session) -> Optional[OperatingSession]:
    """The singleton session row, or None before the first session exists."""
    return db.query(OperatingSession).order_by(OperatingSession.created_at).first()
