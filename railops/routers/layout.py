"""
API routers for seeding the layout: stations, industries, routes, locomotives and cars.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
import logging

from railops.services.operations.database import get_db_session
from railops.services.operations.layout_service import LayoutService
from railops.schemas.operations import (
    ApiResponse, StationSchema, IndustrySchema, RouteSchema, LocomotiveSchema, CarSchema
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/layout", tags=["Layout"])


def _fields(request) -> dict:
    return request.model_dump(exclude_none=True, exclude={"created_at"})


def _listing(db: Session, kind: str) -> ApiResponse:
    rows = LayoutService.list_entities(db, kind)
    return ApiResponse(message=f"Found {len(rows)} {kind}", data=[row.to_dict() for row in rows])


# ==================== STATIONS ====================

@router.post("/stations", response_model=ApiResponse, status_code=201)
async def create_station(request: StationSchema, db: Session = Depends(get_db_session)):
    """Create a new station."""
    station = LayoutService.create_station(db, **_fields(request))
    return ApiResponse(message="Station created", data=station.to_dict())


@router.get("/stations", response_model=ApiResponse)
async def get_all_stations(db: Session = Depends(get_db_session)):
    """Get all stations."""
    return _listing(db, "stations")


@router.get("/stations/{station_id}", response_model=ApiResponse)
async def get_station(station_id: str, db: Session = Depends(get_db_session)):
    """Get a specific station."""
    return ApiResponse(message="Station found", data=LayoutService.get_entity(db, "stations", station_id).to_dict())


# ==================== INDUSTRIES ====================

@router.post("/industries", response_model=ApiResponse, status_code=201)
async def create_industry(request: IndustrySchema, db: Session = Depends(get_db_session)):
    """Create a new industry."""
    industry = LayoutService.create_industry(db, **_fields(request))
    return ApiResponse(message="Industry created", data=industry.to_dict())


@router.get("/industries", response_model=ApiResponse)
async def get_all_industries(db: Session = Depends(get_db_session)):
    """Get all industries."""
    return _listing(db, "industries")


@router.get("/industries/{industry_id}", response_model=ApiResponse)
async def get_industry(industry_id: str, db: Session = Depends(get_db_session)):
    """Get a specific industry."""
    return ApiResponse(message="Industry found", data=LayoutService.get_entity(db, "industries", industry_id).to_dict())


# ==================== ROUTES ====================

@router.post("/routes", response_model=ApiResponse, status_code=201)
async def create_route(request: RouteSchema, db: Session = Depends(get_db_session)):
    """Create a new route."""
    route = LayoutService.create_route(db, **_fields(request))
    return ApiResponse(message="Route created", data=route.to_dict())


@router.get("/routes", response_model=ApiResponse)
async def get_all_routes(db: Session = Depends(get_db_session)):
    """Get all routes."""
    return _listing(db, "routes")


@router.get("/routes/{route_id}", response_model=ApiResponse)
async def get_route(route_id: str, db: Session = Depends(get_db_session)):
    """Get a specific route."""
    return ApiResponse(message="Route found", data=LayoutService.get_entity(db, "routes", route_id).to_dict())


# ==================== LOCOMOTIVES ====================

@router.post("/locomotives", response_model=ApiResponse, status_code=201)
async def create_locomotive(request: LocomotiveSchema, db: Session = Depends(get_db_session)):
    """Create a new locomotive."""
    locomotive = LayoutService.create_locomotive(db, **_fields(request))
    return ApiResponse(message="Locomotive created", data=locomotive.to_dict())


@router.get("/locomotives", response_model=ApiResponse)
async def get_all_locomotives(db: Session = Depends(get_db_session)):
    """Get all locomotives."""
    return _listing(db, "locomotives")


@router.get("/locomotives/{locomotive_id}", response_model=ApiResponse)
async def get_locomotive(locomotive_id: str, db: Session = Depends(get_db_session)):
    """Get a specific locomotive."""
    return ApiResponse(
        message="Locomotive found", data=LayoutService.get_entity(db, "locomotives", locomotive_id).to_dict()
    )


# ==================== CARS ====================

@router.post("/cars", response_model=ApiResponse, status_code=201)
async def create_car(request: CarSchema, db: Session = Depends(get_db_session)):
    """Create a new car."""
    car = LayoutService.create_car(db, **_fields(request))
    return ApiResponse(message="Car created", data=car.to_dict())


@router.get("/cars", response_model=ApiResponse)
async def get_all_cars(db: Session = Depends(get_db_session)):
    """Get all cars."""
    return _listing(db, "cars")


@router.get("/cars/{car_id}", response_model=ApiResponse)
async def get_car(car_id: str, db: Session = Depends(get_db_session)):
    """Get a specific car."""
    return ApiResponse(message="Car found", data=LayoutService.get_entity(db, "cars", car_id).to_dict())
