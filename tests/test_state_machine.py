import pytest

from railops.services.operations.state_machine import (
    CarOrderEvent, CarOrderStatus, TrainEvent, TrainStatus,
    allowed_order_statuses, order_event_for, transition
)


@pytest.mark.parametrize("current,event,expected", [
    (TrainStatus.PLANNED, TrainEvent.GENERATE_SWITCH_LIST, TrainStatus.IN_PROGRESS),
    (TrainStatus.PLANNED, TrainEvent.CANCEL, TrainStatus.CANCELLED),
    (TrainStatus.IN_PROGRESS, TrainEvent.COMPLETE, TrainStatus.COMPLETED),
    (TrainStatus.IN_PROGRESS, TrainEvent.CANCEL, TrainStatus.CANCELLED),
])
def test_allowed_train_transitions(current, event, expected):
    result = transition(current.value, event)
    assert result.allowed
    assert result.next_status == expected


def test_generate_refused_outside_planned():
    result = transition("In Progress", TrainEvent.GENERATE_SWITCH_LIST)
    assert not result.allowed
    assert result.reason.startswith("Cannot generate switch list for train with status: In Progress")


def test_complete_refused_outside_in_progress():
    result = transition("Planned", TrainEvent.COMPLETE)
    assert not result.allowed
    assert "Only 'In Progress' trains can be completed." in result.reason


def test_cancel_messages():
    assert transition("Completed", TrainEvent.CANCEL).reason == "Cannot cancel completed train"
    assert transition("Cancelled", TrainEvent.CANCEL).reason == "Cannot cancel train with status: Cancelled"


def test_terminal_train_statuses_have_no_exits():
    for status in (TrainStatus.COMPLETED, TrainStatus.CANCELLED):
        for event in TrainEvent:
            assert not transition(status, event).allowed


def test_car_order_revert_only_from_committed():
    assert transition("assigned", CarOrderEvent.REVERT).next_status == CarOrderStatus.PENDING
    assert transition("in-transit", CarOrderEvent.REVERT).next_status == CarOrderStatus.PENDING
    assert not transition("pending", CarOrderEvent.REVERT).allowed
    assert not transition("delivered", CarOrderEvent.REVERT).allowed


def test_delivered_is_terminal():
    assert allowed_order_statuses("delivered") == set()


def test_order_event_lookup():
    assert order_event_for("pending", "assigned") == CarOrderEvent.ASSIGN
    assert order_event_for("assigned", "in-transit") == CarOrderEvent.DEPART
    assert order_event_for("pending", "in-transit") is None


def test_unknown_event_type_rejected():
    with pytest.raises(TypeError):
        transition("Planned", "complete")
