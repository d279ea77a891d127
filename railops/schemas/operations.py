"""
Pydantic schemas for layout, car order, train and session endpoints.
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime


# ==================== RESPONSES ====================

class ApiResponse(BaseModel):
    """Envelope for every successful response."""
    success: bool = True
    message: str
    data: Optional[Any] = None
    stats: Optional[Dict[str, Any]] = None


# ==================== LAYOUT ====================

class StationSchema(BaseModel):
    id: Optional[str] = None
    name: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CarDemandSchema(BaseModel):
    aar_type_id: str
    cars_per_session: int = Field(ge=1)
    frequency: int = Field(default=1, ge=1)


class IndustrySchema(BaseModel):
    id: Optional[str] = None
    name: str
    station_id: str
    is_yard: bool = False
    car_demand_config: List[CarDemandSchema] = []
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RouteSchema(BaseModel):
    id: Optional[str] = None
    name: str
    description: Optional[str] = None
    origin_yard_id: str
    termination_yard_id: str
    station_sequence: List[str] = []
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class LocomotiveSchema(BaseModel):
    id: Optional[str] = None
    reporting_marks: str
    reporting_number: str
    model: Optional[str] = None
    is_in_service: bool = True
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CarSchema(BaseModel):
    id: Optional[str] = None
    reporting_marks: str
    reporting_number: str
    car_type: str  # AAR type id
    current_industry_id: str
    home_yard_id: str
    is_in_service: bool = True
    sessions_at_current_location: int = Field(default=0, ge=0)
    last_moved: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ==================== CAR ORDERS ====================

class GenerateOrdersRequest(BaseModel):
    session_number: Optional[int] = None
    industry_ids: Optional[List[str]] = None
    force: bool = False


class CarOrderCreateRequest(BaseModel):
    industry_id: str
    aar_type_id: str
    session_number: Optional[int] = None


class CarOrderUpdateRequest(BaseModel):
    status: Optional[str] = None  # pending/assigned/in-transit/delivered
    assigned_car_id: Optional[str] = None
    assigned_train_id: Optional[str] = None


# ==================== TRAINS ====================

class TrainCreateRequest(BaseModel):
    id: Optional[str] = None
    name: str
    route_id: str
    locomotive_ids: List[str]
    max_capacity: int
    session_number: Optional[int] = None


class TrainUpdateRequest(BaseModel):
    name: Optional[str] = None
    route_id: Optional[str] = None
    locomotive_ids: Optional[List[str]] = None
    max_capacity: Optional[int] = None


# ==================== SESSIONS ====================

class SessionDescriptionRequest(BaseModel):
    description: Optional[str] = None

