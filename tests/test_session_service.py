import pytest

from railops.exceptions import BadRequestError, InternalError, NotFoundError, ValidationFailedError
from railops.services.operations.models import Car, CarOrder, OperatingSession, Train
from railops.services.operations.session_service import SessionService
from railops.services.operations.switch_list_engine import SwitchListEngine
from railops.services.operations.train_service import TrainService


def _state(db):
    db.expire_all()
    return {
        model.__tablename__: sorted((row.to_dict() for row in db.query(model).all()), key=lambda r: r["id"])
        for model in (Car, Train, CarOrder)
    }


def _busy_layout(db, layout):
    """One completed train and one train still in progress."""
    layout.car("car-0000", at="yard1")
    layout.order("order-0")
    layout.train()
    SwitchListEngine.generate_switch_list(db, "local-123")
    TrainService.complete_train(db, "local-123")

    layout.car("car-0001", at="yard1")
    layout.order("order-1", industry_id="yard2")
    layout.train(train_id="through-1", name="Through 1", locomotive_ids=["loco-2"])
    SwitchListEngine.generate_switch_list(db, "through-1")


def test_get_current_session_creates_session_one(db):
    session = SessionService.get_current_session(db)
    assert session.current_session_number == 1
    assert session.description == "Initial operating session"
    assert session.previous_session_snapshot is None
    assert SessionService.get_current_session(db).id == session.id


def test_advance_session(db, layout):
    _busy_layout(db, layout)

    session, stats = SessionService.advance_session(db)

    assert session.current_session_number == 2
    assert session.description == "Operating Session 2"
    assert stats["trains_deleted"] == 1
    assert stats["active_trains_reverted"] == 1
    assert stats["orders_reverted"] == 1
    assert stats["cars_updated"] == 2
    assert stats["advanced_to_session"] == 2

    assert db.get(Train, "local-123") is None
    assert db.get(Train, "through-1").status == "In Progress"
    order = db.get(CarOrder, "order-1")
    assert order.status == "pending"
    assert order.assigned_train_id is None
    assert db.get(CarOrder, "order-0").status == "delivered"
    assert all(car.sessions_at_current_location == 1 for car in db.query(Car).all())
    assert session.previous_session_snapshot["session_number"] == 1


def test_advance_with_description(db, layout):
    session, _ = SessionService.advance_session(db, "Fall ops night")
    assert session.description == "Fall ops night"


def test_advance_with_empty_description_uses_default(db, layout):
    session, _ = SessionService.advance_session(db, "")
    assert session.description == "Operating Session 2"

    rolled_back, _ = SessionService.rollback_session(db, "")
    assert rolled_back.description == "Rolled back to session 1"


def test_advance_rejects_overlong_description(db, layout):
    with pytest.raises(ValidationFailedError):
        SessionService.advance_session(db, "x" * 501)
    assert db.query(OperatingSession).one().current_session_number == 1


def test_advance_without_session(db):
    with pytest.raises(NotFoundError):
        SessionService.advance_session(db)


def test_rollback_restores_pre_advance_state(db, layout):
    _busy_layout(db, layout)
    before = _state(db)

    SessionService.advance_session(db)
    session, stats = SessionService.rollback_session(db)

    assert session.current_session_number == 1
    assert session.previous_session_snapshot is None
    assert session.description == "Rolled back to session 1"
    assert stats == {
        "cars_restored": 2,
        "trains_restored": 2,
        "car_orders_restored": 2,
        "rolled_back_to_session": 1,
    }
    assert _state(db) == before


def test_rollback_from_session_one_always_fails(db, layout):
    current = db.query(OperatingSession).one()
    current.previous_session_snapshot = {
        "session_number": 1, "taken_at": "2024-01-01T08:00:00", "cars": [], "trains": [], "car_orders": []
    }
    db.commit()

    with pytest.raises(BadRequestError) as error:
        SessionService.rollback_session(db)
    assert error.value.message == "Cannot rollback from session 1"


def test_rollback_requires_snapshot(db, layout):
    SessionService.advance_session(db)
    SessionService.rollback_session(db)
    current = db.query(OperatingSession).one()
    current.current_session_number = 3
    db.commit()

    with pytest.raises(BadRequestError) as error:
        SessionService.rollback_session(db)
    assert error.value.message == "No previous session snapshot available"


def test_rollback_rejects_corrupted_snapshot(db, layout):
    current = db.query(OperatingSession).one()
    current.current_session_number = 2
    current.previous_session_snapshot = {"session_number": 1, "cars": "not a list"}
    db.commit()

    with pytest.raises(InternalError):
        SessionService.rollback_session(db)
    db.expire_all()
    assert db.query(OperatingSession).one().current_session_number == 2


@pytest.mark.parametrize("description", [None, "", "   ", "x" * 501, 42])
def test_update_description_validation(db, layout, description):
    with pytest.raises(ValidationFailedError):
        SessionService.update_session_description(db, description)


def test_update_description(db, layout):
    session = SessionService.update_session_description(db, "Switching the mill")
    assert session.description == "Switching the mill"


def test_update_description_without_session(db):
    with pytest.raises(NotFoundError):
        SessionService.update_session_description(db, "anything")


def test_session_stats(db, layout):
    layout.car("car-0000")
    layout.train()
    stats = SessionService.session_stats(db)
    assert stats["current_session_number"] == 1
    assert stats["can_rollback"] is False
    assert stats["entity_counts"] == {"cars": 1, "trains": 1, "car_orders": 0}
    assert stats["trains_by_status"] == {"Planned": 1}
