import pytest

from railops.exceptions import BadRequestError, ConflictError, InvalidTransitionError, NotFoundError, ValidationFailedError
from railops.services.operations.models import Car, CarOrder, Train
from railops.services.operations.switch_list_engine import SwitchListEngine
from railops.services.operations.train_service import TrainService, calculate_capacity_usage


def _start(db, layout, orders=("lumber-mill",)):
    for i, industry in enumerate(orders):
        layout.car(f"car-000{i}", at="yard1")
        layout.order(f"order-{i}", industry_id=industry)
    layout.train()
    return SwitchListEngine.generate_switch_list(db, "local-123")


# ==================== CREATE / UPDATE / DELETE ====================

def test_create_train_in_current_session(db, layout):
    train = TrainService.create_train(db, "Local 7", "route-1", ["loco-1"], 10)
    assert train.status == "Planned"
    assert train.session_number == 1
    assert train.assigned_car_ids == []


@pytest.mark.parametrize("capacity", [0, 101])
def test_create_train_capacity_bounds(db, layout, capacity):
    with pytest.raises(ValidationFailedError):
        TrainService.create_train(db, "Local 7", "route-1", ["loco-1"], capacity)


def test_create_train_reference_checks(db, layout):
    with pytest.raises(NotFoundError):
        TrainService.create_train(db, "Local 7", "no-route", ["loco-1"], 10)
    with pytest.raises(NotFoundError):
        TrainService.create_train(db, "Local 7", "route-1", ["ghost"], 10)
    with pytest.raises(BadRequestError):
        TrainService.create_train(db, "Local 7", "route-1", ["loco-shop"], 10)


def test_create_train_conflicts(db, layout):
    TrainService.create_train(db, "Local 7", "route-1", ["loco-1"], 10)
    with pytest.raises(ConflictError):
        TrainService.create_train(db, "Local 7", "route-1", ["loco-2"], 10)
    with pytest.raises(ConflictError):
        TrainService.create_train(db, "Local 8", "route-1", ["loco-1"], 10)


def test_update_and_delete_only_while_planned(db, layout):
    _start(db, layout)

    with pytest.raises(ConflictError) as update_error:
        TrainService.update_train(db, "local-123", max_capacity=5)
    assert update_error.value.message == (
        "Cannot update train with status: In Progress. Only 'Planned' trains can be updated."
    )
    with pytest.raises(ConflictError):
        TrainService.delete_train(db, "local-123")


def test_update_planned_train(db, layout):
    layout.train()
    train = TrainService.update_train(db, "local-123", max_capacity=5, locomotive_ids=["loco-2"])
    assert train.max_capacity == 5
    assert train.locomotive_ids == ["loco-2"]

    TrainService.delete_train(db, "local-123")
    assert db.get(Train, "local-123") is None


# ==================== COMPLETE ====================

def test_complete_moves_setout_cars_and_delivers_orders(db, layout):
    train, _ = _start(db, layout, orders=("lumber-mill", "team-track"))
    setouts = [item for visit in train.switch_list["stations"] for item in visit["setouts"]]
    assert len(setouts) == 2

    train, stats = TrainService.complete_train(db, "local-123")

    assert train.status == "Completed"
    assert stats == {"cars_moved": 2, "orders_delivered": 2}
    for item in setouts:
        car = db.get(Car, item["car_id"])
        assert car.current_industry_id == item["destination_industry_id"]
        assert car.sessions_at_current_location == 0
        assert car.last_moved is not None
        assert db.get(CarOrder, item["car_order_id"]).status == "delivered"


def test_local_123_completion(db, layout):
    layout.car("car-0001", at="yard1")
    layout.order("order-1", industry_id="yard1")
    layout.train()
    SwitchListEngine.generate_switch_list(db, "local-123")

    train, stats = TrainService.complete_train(db, "local-123")

    assert stats["cars_moved"] == 1
    assert train.status == "Completed"
    assert db.get(CarOrder, "order-1").status == "delivered"
    assert db.get(Car, "car-0001").current_industry_id == "yard1"


def test_complete_requires_in_progress(db, layout):
    layout.train()
    with pytest.raises(InvalidTransitionError):
        TrainService.complete_train(db, "local-123")


# ==================== CANCEL ====================

def test_cancel_reverts_orders_without_moving_cars(db, layout):
    _start(db, layout)
    locations = {c.id: c.current_industry_id for c in db.query(Car).all()}

    train, stats = TrainService.cancel_train(db, "local-123")

    assert train.status == "Cancelled"
    assert stats["orders_reverted"] == 1
    assert train.assigned_car_ids == []
    order = db.get(CarOrder, "order-0")
    assert order.status == "pending"
    assert order.assigned_car_id is None
    assert order.assigned_train_id is None
    db.expire_all()
    assert {c.id: c.current_industry_id for c in db.query(Car).all()} == locations


def test_cancel_planned_train(db, layout):
    layout.train()
    train, stats = TrainService.cancel_train(db, "local-123")
    assert train.status == "Cancelled"
    assert stats["orders_reverted"] == 0


def test_cancel_terminal_trains_refused(db, layout):
    _start(db, layout)
    TrainService.complete_train(db, "local-123")
    with pytest.raises(InvalidTransitionError) as completed_error:
        TrainService.cancel_train(db, "local-123")
    assert completed_error.value.message == "Cannot cancel completed train"

    layout.train(train_id="t2", name="Local 2", locomotive_ids=["loco-2"])
    TrainService.cancel_train(db, "t2")
    with pytest.raises(InvalidTransitionError):
        TrainService.cancel_train(db, "t2")


# ==================== SUMMARY ====================

def test_capacity_usage():
    assert calculate_capacity_usage(None) == {"max_load": 0, "final_load": 0}
    switch_list = {"stations": [
        {"pickups": [1, 2], "setouts": []},
        {"pickups": [3], "setouts": [1]},
        {"pickups": [], "setouts": [2, 3]},
    ]}
    assert calculate_capacity_usage(switch_list) == {"max_load": 3, "final_load": 0}
