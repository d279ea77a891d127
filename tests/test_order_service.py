import pytest

from railops.exceptions import (
    BadRequestError, ConflictError, InvalidTransitionError, NotFoundError, ValidationFailedError
)
from railops.services.operations.models import CarOrder, OperatingSession
from railops.services.operations.order_service import CarOrderService


def test_generate_orders_for_lumber_mill(db, layout):
    result = CarOrderService.generate_orders(db, session_number=2, industry_ids=["lumber-mill"])

    assert result["total_orders_generated"] == 2
    orders = db.query(CarOrder).all()
    assert len(orders) == 2
    for order in orders:
        assert order.industry_id == "lumber-mill"
        assert order.aar_type_id == "flatcar"
        assert order.session_number == 2
        assert order.status == "pending"


def test_generate_orders_respects_frequency(db, layout):
    odd = CarOrderService.generate_orders(db, session_number=1)
    assert odd["orders_by_industry"] == {"lumber-mill": 2}

    even = CarOrderService.generate_orders(db, session_number=2)
    assert even["orders_by_industry"] == {"lumber-mill": 2, "team-track": 1}
    assert even["orders_by_aar_type"] == {"flatcar": 2, "boxcar": 1}


def test_generate_orders_skips_duplicates_unless_forced(db, layout):
    CarOrderService.generate_orders(db, session_number=3, industry_ids=["lumber-mill"])

    again = CarOrderService.generate_orders(db, session_number=3, industry_ids=["lumber-mill"])
    assert again["total_orders_generated"] == 0

    forced = CarOrderService.generate_orders(db, session_number=3, industry_ids=["lumber-mill"], force=True)
    assert forced["total_orders_generated"] == 2
    assert db.query(CarOrder).count() == 4


def test_generate_orders_defaults_to_current_session(db, layout):
    result = CarOrderService.generate_orders(db)
    assert result["session_number"] == 1


def test_generate_orders_without_session(db):
    with pytest.raises(NotFoundError):
        CarOrderService.generate_orders(db)


def test_generate_orders_rejects_bad_session_number(db, layout):
    with pytest.raises(ValidationFailedError):
        CarOrderService.generate_orders(db, session_number=0)


def test_create_order_duplicate_pending(db, layout):
    CarOrderService.create_order(db, "lumber-mill", "flatcar")
    with pytest.raises(ConflictError):
        CarOrderService.create_order(db, "lumber-mill", "flatcar")


def test_create_order_unknown_industry(db, layout):
    with pytest.raises(NotFoundError):
        CarOrderService.create_order(db, "nowhere", "flatcar")


def test_update_order_assigns_matching_car(db, layout):
    layout.car("car-0001")
    train = layout.train()
    order = layout.order("order-1")

    updated = CarOrderService.update_order(
        db, order.id, status="assigned", assigned_car_id="car-0001", assigned_train_id=train.id
    )
    assert updated.status == "assigned"
    assert updated.assigned_car_id == "car-0001"


def test_update_order_claims_assigned_car(db, layout):
    car = layout.car("car-0001")
    train = layout.train()
    order = layout.order("order-1")
    version_before = car.version

    CarOrderService.update_order(
        db, order.id, status="assigned", assigned_car_id="car-0001", assigned_train_id=train.id
    )
    db.refresh(car)
    assert car.version == version_before + 1
    assert car.sessions_at_current_location == 0


def test_update_order_rejects_wrong_car_type(db, layout):
    layout.car("car-0002", car_type="boxcar")
    order = layout.order("order-1")

    with pytest.raises(BadRequestError):
        CarOrderService.update_order(db, order.id, assigned_car_id="car-0002")
    db.refresh(order)
    assert order.assigned_car_id is None


def test_update_order_rejects_car_held_elsewhere(db, layout):
    layout.car("car-0001")
    train = layout.train()
    first = layout.order("order-1")
    second = layout.order("order-2")
    CarOrderService.update_order(
        db, first.id, status="assigned", assigned_car_id="car-0001", assigned_train_id=train.id
    )

    with pytest.raises(ConflictError):
        CarOrderService.update_order(db, second.id, assigned_car_id="car-0001")


def test_update_order_invalid_status_move(db, layout):
    order = layout.order("order-1")
    with pytest.raises(InvalidTransitionError):
        CarOrderService.update_order(db, order.id, status="in-transit")


def test_update_order_committed_status_needs_assignment(db, layout):
    order = layout.order("order-1")
    with pytest.raises(BadRequestError):
        CarOrderService.update_order(db, order.id, status="assigned")
    db.refresh(order)
    assert order.status == "pending"


def test_delete_committed_order_refused(db, layout):
    layout.car("car-0001")
    train = layout.train()
    order = layout.order("order-1")
    CarOrderService.update_order(
        db, order.id, status="assigned", assigned_car_id="car-0001", assigned_train_id=train.id
    )

    with pytest.raises(ConflictError):
        CarOrderService.delete_order(db, order.id)


def test_list_orders_search_and_stats(db, layout):
    layout.order("order-1")
    layout.order("order-2", industry_id="team-track", aar_type_id="boxcar")

    found = CarOrderService.list_orders(db, search="lumber")
    assert [o.id for o in found] == ["order-1"]

    newest_first = CarOrderService.list_orders(db)
    assert [o.id for o in newest_first] == ["order-2", "order-1"]

    stats = CarOrderService.order_stats(db)
    assert stats["total_orders"] == 2
    assert stats["pending_orders"] == 2
    assert stats["orders_by_aar_type"] == {"flatcar": 1, "boxcar": 1}


def test_single_session_row(db, layout):
    assert db.query(OperatingSession).count() == 1
