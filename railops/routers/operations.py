"""
API routers for car orders, trains and operating sessions.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional
import logging

from railops.services.operations.database import get_db_session
from railops.services.operations.order_service import CarOrderService
from railops.services.operations.session_service import SessionService
from railops.services.operations.switch_list_engine import SwitchListEngine
from railops.services.operations.train_service import TrainService
from railops.schemas.operations import (
    ApiResponse, GenerateOrdersRequest, CarOrderCreateRequest, CarOrderUpdateRequest,
    TrainCreateRequest, TrainUpdateRequest, SessionDescriptionRequest
)

logger = logging.getLogger(__name__)
# Plain def handlers run in the threadpool, where the operation locks apply.
router = APIRouter(prefix="/api", tags=["Operations"])


def _session_payload(session) -> dict:
    data = session.to_dict()
    data.pop("previous_session_snapshot", None)
    data["has_snapshot"] = bool(session.previous_session_snapshot)
    return data


# ==================== CAR ORDERS ====================

@router.post("/car-orders/generate", response_model=ApiResponse)
def generate_car_orders(request: GenerateOrdersRequest, db: Session = Depends(get_db_session)):
    """Generate pending car orders from industry demand."""
    result = CarOrderService.generate_orders(
        db, session_number=request.session_number, industry_ids=request.industry_ids, force=request.force
    )
    return ApiResponse(
        message=f"Generated {result['total_orders_generated']} car orders for session {result['session_number']}",
        data=result
    )


@router.get("/car-orders", response_model=ApiResponse)
def list_car_orders(
    industry_id: Optional[str] = None,
    status: Optional[str] = None,
    session_number: Optional[int] = None,
    aar_type_id: Optional[str] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db_session)
):
    """List car orders, newest first."""
    orders = CarOrderService.list_orders(
        db, industry_id=industry_id, status=status, session_number=session_number,
        aar_type_id=aar_type_id, search=search
    )
    return ApiResponse(message=f"Found {len(orders)} car orders", data=[o.to_dict() for o in orders])


@router.get("/car-orders/stats", response_model=ApiResponse)
def car_order_stats(session_number: Optional[int] = None, db: Session = Depends(get_db_session)):
    """Car order counts by status and AAR type."""
    return ApiResponse(message="Car order statistics", data=CarOrderService.order_stats(db, session_number))


@router.post("/car-orders", response_model=ApiResponse, status_code=201)
def create_car_order(request: CarOrderCreateRequest, db: Session = Depends(get_db_session)):
    """Create a single pending car order."""
    order = CarOrderService.create_order(db, request.industry_id, request.aar_type_id, request.session_number)
    return ApiResponse(message="Car order created", data=order.to_dict())


@router.get("/car-orders/{order_id}", response_model=ApiResponse)
def get_car_order(order_id: str, db: Session = Depends(get_db_session)):
    """Get a car order with its industry, car and train."""
    return ApiResponse(message="Car order found", data=CarOrderService.get_enriched_order(db, order_id))


@router.put("/car-orders/{order_id}", response_model=ApiResponse)
def update_car_order(order_id: str, request: CarOrderUpdateRequest, db: Session = Depends(get_db_session)):
    """Update a car order's status or assignment."""
    order = CarOrderService.update_order(db, order_id, **request.model_dump(exclude_unset=True))
    return ApiResponse(message="Car order updated", data=order.to_dict())


@router.delete("/car-orders/{order_id}", response_model=ApiResponse)
def delete_car_order(order_id: str, db: Session = Depends(get_db_session)):
    """Delete a pending or delivered car order."""
    CarOrderService.delete_order(db, order_id)
    return ApiResponse(message="Car order deleted")


# ==================== TRAINS ====================

@router.get("/trains", response_model=ApiResponse)
def list_trains(
    session_number: Optional[int] = None,
    status: Optional[str] = None,
    route_id: Optional[str] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db_session)
):
    """List trains."""
    trains = TrainService.list_trains(db, session_number=session_number, status=status, route_id=route_id, search=search)
    return ApiResponse(
        message=f"Found {len(trains)} trains",
        data=[TrainService.train_summary(db, t) for t in trains]
    )


@router.post("/trains", response_model=ApiResponse, status_code=201)
def create_train(request: TrainCreateRequest, db: Session = Depends(get_db_session)):
    """Create a Planned train."""
    train = TrainService.create_train(
        db, request.name, request.route_id, request.locomotive_ids, request.max_capacity,
        session_number=request.session_number, train_id=request.id
    )
    return ApiResponse(message="Train created", data=TrainService.train_summary(db, train))


@router.get("/trains/{train_id}", response_model=ApiResponse)
def get_train(train_id: str, db: Session = Depends(get_db_session)):
    """Get a train with its switch list."""
    train = TrainService.get_train(db, train_id)
    return ApiResponse(message="Train found", data=TrainService.train_summary(db, train))


@router.put("/trains/{train_id}", response_model=ApiResponse)
def update_train(train_id: str, request: TrainUpdateRequest, db: Session = Depends(get_db_session)):
    """Update a Planned train."""
    train = TrainService.update_train(db, train_id, **request.model_dump(exclude_unset=True))
    return ApiResponse(message="Train updated", data=TrainService.train_summary(db, train))


@router.delete("/trains/{train_id}", response_model=ApiResponse)
def delete_train(train_id: str, db: Session = Depends(get_db_session)):
    """Delete a Planned train."""
    TrainService.delete_train(db, train_id)
    return ApiResponse(message="Train deleted")


@router.post("/trains/{train_id}/generate-switch-list", response_model=ApiResponse)
def generate_switch_list(train_id: str, db: Session = Depends(get_db_session)):
    """Generate the switch list and start the train."""
    train, stats = SwitchListEngine.generate_switch_list(db, train_id)
    return ApiResponse(
        message=f"Switch list generated for train {train.name}",
        data=TrainService.train_summary(db, train),
        stats=stats
    )


@router.post("/trains/{train_id}/complete", response_model=ApiResponse)
def complete_train(train_id: str, db: Session = Depends(get_db_session)):
    """Complete an In Progress train, moving its cars."""
    train, stats = TrainService.complete_train(db, train_id)
    return ApiResponse(
        message=f"Train {train.name} completed",
        data=TrainService.train_summary(db, train),
        stats=stats
    )


@router.post("/trains/{train_id}/cancel", response_model=ApiResponse)
def cancel_train(train_id: str, db: Session = Depends(get_db_session)):
    """Cancel a train and release its orders."""
    train, stats = TrainService.cancel_train(db, train_id)
    return ApiResponse(
        message=f"Train {train.name} cancelled",
        data=TrainService.train_summary(db, train),
        stats=stats
    )


# ==================== SESSIONS ====================

@router.get("/sessions/current", response_model=ApiResponse)
def get_current_session(db: Session = Depends(get_db_session)):
    """Get the current operating session."""
    session = SessionService.get_current_session(db)
    return ApiResponse(message="Current operating session", data=_session_payload(session))


@router.put("/sessions/current", response_model=ApiResponse)
def update_current_session(request: SessionDescriptionRequest, db: Session = Depends(get_db_session)):
    """Update the current session's description."""
    session = SessionService.update_session_description(db, request.description)
    return ApiResponse(message="Session description updated", data=_session_payload(session))


@router.post("/sessions/advance", response_model=ApiResponse)
def advance_session(request: Optional[SessionDescriptionRequest] = None, db: Session = Depends(get_db_session)):
    """Advance to the next operating session."""
    description = request.description if request else None
    session, stats = SessionService.advance_session(db, description)
    return ApiResponse(
        message=f"Advanced to session {session.current_session_number}",
        data=_session_payload(session),
        stats=stats
    )


@router.post("/sessions/rollback", response_model=ApiResponse)
def rollback_session(request: Optional[SessionDescriptionRequest] = None, db: Session = Depends(get_db_session)):
    """Roll back to the previous operating session."""
    description = request.description if request else None
    session, stats = SessionService.rollback_session(db, description)
    return ApiResponse(
        message=f"Rolled back to session {session.current_session_number}",
        data=_session_payload(session),
        stats=stats
    )


@router.get("/sessions/stats", response_model=ApiResponse)
def session_stats(db: Session = Depends(get_db_session)):
    """Entity counts and rollback availability."""
    return ApiResponse(message="Session statistics", data=SessionService.session_stats(db))
