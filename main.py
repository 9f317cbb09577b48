import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
from config import Settings
from schemas import (
    AdditionalEquipment,
    AssignProviderRequest,
    Bid,
    BidCreate,
    BidStatusUpdate,
    CargoType,
    Feedback,
    FeedbackCreate,
    LoginRequest,
    LoginResponse,
    MatchedProvider,
    PackagingType,
    Provider,
    ProviderCreate,
    ProviderStatusUpdate,
    ShipmentRequest,
    ShipmentRequestCreate,
    ShipmentRequestStatus,
    ShipmentRequestStatusUpdate,
    UserCreate,
    UserRole,
    VehicleType,
)
from seed import seed_demo_providers
from storage import ConflictError, InvalidTransitionError, NotFoundError, Storage, build_storage

logger = logging.getLogger(__name__)

MOCK_PASSWORD = "password"
DEFAULT_COMPANY_NAMES = {
    UserRole.AGENT: "Importaciones Globales S.A.",
    UserRole.PROVIDER: "Transportes Rápido",
}

# Returned by POST /api/shipment-requests in demo mode, whatever the body
DEMO_CREATED_REQUEST = {
    "id": 999,
    "requestId": "REQ-DEMO-9999",
    "userId": 1,
    "status": "Pending",
    "assignedProviderId": None,
    "requestorName": "Demo Request",
    "company": "Importaciones Globales S.A.",
    "cargoType": "General Merchandise",
    "weight": 5000,
    "volume": 20,
    "specialRequirements": "Demo request created for testing",
    "pickupAddress": "Demo Origin Address",
    "deliveryAddress": "Demo Destination Address",
    "pickupDate": "2025-04-30",
    "deliveryDate": "2025-05-05",
    "pickupContact": "Contact 1",
    "deliveryContact": "Contact 2",
    "vehicleType": "Dry Van",
    "vehicleSize": "large",
    "additionalEquipment": ["Liftgate"],
}


def demo_fallback_request() -> ShipmentRequest:
    """Stand-in served by GET /api/shipment-requests/{id} in demo mode for unknown ids."""
    return ShipmentRequest(
        id=1,
        request_id="SHP2025001",
        user_id=1,
        requestor_name="Importaciones Globales S.A.",
        company="Importaciones Globales S.A.",
        cargo_type=CargoType.GENERAL,
        weight=1500,
        volume=25,
        packaging_type=PackagingType.PALLETS,
        special_requirements="Carga de alto valor. Se requiere monitoreo continuo.",
        pickup_address="Av. Industrial 123, Zona Central, CDMX",
        delivery_address="Blvd. Logístico 456, Zona Norte, Monterrey",
        pickup_date="2025-04-15T09:00:00",
        delivery_date="2025-04-17T14:00:00",
        pickup_contact="Juan Pérez",
        delivery_contact="María Gómez",
        vehicle_type=VehicleType.DRY_VAN,
        vehicle_size="Grande",
        additional_equipment=[AdditionalEquipment.LIFTGATE, AdditionalEquipment.PALLET_JACK],
        status=ShipmentRequestStatus.PENDING,
        assigned_provider_id=None,
    )


def format_validation_error(errors) -> str:
    parts = []
    for err in errors:
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        where = f' at "{".".join(loc)}"' if loc else ""
        parts.append(f"{err.get('msg', 'Invalid value')}{where}")
    return "Validation error: " + "; ".join(parts)


# --------- Dependencies ---------

def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


router = APIRouter(prefix="/api")


# --------- User Endpoints ---------
@router.post("/login", response_model=LoginResponse)
def login(payload: LoginRequest, storage: Storage = Depends(get_storage)):
    roles = {r.value for r in UserRole}
    if not payload.username or payload.role not in roles:
        raise HTTPException(status_code=400, detail="Invalid username or role")

    user = storage.get_user_by_username(payload.username)
    if user is None:
        role = UserRole(payload.role)
        try:
            user = storage.create_user(UserCreate(
                username=payload.username,
                password=MOCK_PASSWORD,
                role=role,
                company_name=DEFAULT_COMPANY_NAMES[role],
            ))
            logger.info("Created user %s (%s)", user.username, role.value)
        except ConflictError:
            # A concurrent login created it first
            user = storage.get_user_by_username(payload.username)
    return LoginResponse(user=user)


# --------- Provider Endpoints ---------
@router.post("/providers", response_model=Provider, status_code=201)
def create_provider(payload: ProviderCreate, storage: Storage = Depends(get_storage)):
    provider = storage.create_provider(payload)
    logger.info("Registered provider %d (%s)", provider.id, provider.company_name)
    return provider


@router.get("/providers", response_model=List[Provider])
def list_providers(storage: Storage = Depends(get_storage)):
    return storage.get_all_providers()


@router.get("/providers/top", response_model=List[Provider])
def top_providers(limit: Optional[int] = Query(None, ge=1), storage: Storage = Depends(get_storage)):
    return storage.get_top_providers(limit or 3)


@router.get("/providers/{provider_id}", response_model=Provider)
def get_provider(provider_id: int, storage: Storage = Depends(get_storage)):
    provider = storage.get_provider(provider_id)
    if provider is None:
        raise HTTPException(status_code=404, detail="Provider not found")
    return provider


@router.patch("/providers/{provider_id}/status", response_model=Provider)
def update_provider_status(provider_id: int, payload: ProviderStatusUpdate, storage: Storage = Depends(get_storage)):
    provider = storage.update_provider_status(provider_id, payload.status)
    logger.info("Provider %d is now %s", provider_id, payload.status.value)
    return provider


# --------- Shipment Request Endpoints ---------
@router.post("/shipment-requests", response_model=ShipmentRequest, status_code=201)
async def create_shipment_request(
    request: Request,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
):
    if settings.shipment_requests_demo_mode:
        logger.info("Demo mode: returning canned shipment request")
        body = dict(DEMO_CREATED_REQUEST, createdAt=datetime.now(timezone.utc).isoformat())
        return JSONResponse(status_code=201, content=body)

    try:
        raw = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be JSON")
    try:
        payload = ShipmentRequestCreate.model_validate(raw)
    except ValidationError as e:
        raise RequestValidationError(e.errors())
    shipment_request = await run_in_threadpool(storage.create_shipment_request, payload)
    logger.info("Created shipment request %s", shipment_request.request_id)
    return shipment_request


@router.get("/shipment-requests", response_model=List[ShipmentRequest])
def list_shipment_requests(user_id: Optional[int] = Query(None, alias="userId"), storage: Storage = Depends(get_storage)):
    if not user_id:
        return []
    return storage.get_shipment_requests_by_user_id(user_id)


@router.get("/shipment-requests/{request_id}", response_model=ShipmentRequest)
def get_shipment_request(
    request_id: int,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
):
    shipment_request = storage.get_shipment_request(request_id)
    if shipment_request is None:
        if settings.shipment_requests_demo_mode:
            return demo_fallback_request()
        raise HTTPException(status_code=404, detail="Shipment request not found")
    return shipment_request


@router.patch("/shipment-requests/{request_id}/status", response_model=ShipmentRequest)
def update_shipment_request_status(
    request_id: int,
    payload: ShipmentRequestStatusUpdate,
    storage: Storage = Depends(get_storage),
):
    shipment_request = storage.update_shipment_request_status(request_id, payload.status)
    logger.info("Shipment request %d is now %s", request_id, payload.status.value)
    return shipment_request


@router.post("/shipment-requests/{request_id}/assign", response_model=ShipmentRequest)
def assign_provider(request_id: int, payload: AssignProviderRequest, storage: Storage = Depends(get_storage)):
    if not payload.provider_id:
        raise HTTPException(status_code=400, detail="Provider ID is required")
    shipment_request = storage.assign_provider(request_id, payload.provider_id)
    logger.info("Assigned provider %d to shipment request %d", payload.provider_id, request_id)
    return shipment_request


@router.get("/shipment-requests/{request_id}/match", response_model=List[MatchedProvider])
def match_providers(
    request_id: int,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
):
    return storage.find_matching_providers(request_id, strategy=settings.matching_strategy)


# --------- Bid Endpoints ---------
@router.post("/bids", response_model=Bid, status_code=201)
def create_bid(payload: BidCreate, storage: Storage = Depends(get_storage)):
    bid = storage.create_bid(payload)
    logger.info("Bid %d from provider %d on shipment request %d", bid.id, bid.provider_id, bid.shipment_request_id)
    return bid


@router.get("/bids", response_model=List[Bid])
def list_bids(
    shipment_request_id: Optional[int] = Query(None, alias="shipmentRequestId"),
    provider_id: Optional[int] = Query(None, alias="providerId"),
    storage: Storage = Depends(get_storage),
):
    if shipment_request_id:
        return storage.get_bids_by_shipment_request_id(shipment_request_id)
    if provider_id:
        return storage.get_bids_by_provider_id(provider_id)
    raise HTTPException(status_code=400, detail="Missing required query parameter")


@router.get("/bids/{bid_id}", response_model=Bid)
def get_bid(bid_id: int, storage: Storage = Depends(get_storage)):
    bid = storage.get_bid(bid_id)
    if bid is None:
        raise HTTPException(status_code=404, detail="Bid not found")
    return bid


@router.patch("/bids/{bid_id}/status", response_model=Bid)
def update_bid_status(bid_id: int, payload: BidStatusUpdate, storage: Storage = Depends(get_storage)):
    bid = storage.update_bid_status(bid_id, payload.status)
    logger.info("Bid %d is now %s", bid_id, payload.status.value)
    return bid


# --------- Feedback Endpoints ---------
@router.post("/feedback", response_model=Feedback, status_code=201)
def create_feedback(payload: FeedbackCreate, storage: Storage = Depends(get_storage)):
    feedback = storage.create_feedback(payload)
    logger.info("Feedback %d rated provider %d with %d", feedback.id, feedback.provider_id, feedback.rating)
    return feedback


@router.get("/feedback")
def list_feedback(
    shipment_request_id: Optional[int] = Query(None, alias="shipmentRequestId"),
    provider_id: Optional[int] = Query(None, alias="providerId"),
    storage: Storage = Depends(get_storage),
):
    if shipment_request_id:
        return jsonable_encoder(storage.get_feedback_by_shipment_request_id(shipment_request_id))
    if provider_id:
        return jsonable_encoder(storage.get_feedbacks_by_provider_id(provider_id))
    raise HTTPException(status_code=400, detail="Missing required query parameter")


@router.get("/feedback/{feedback_id}", response_model=Feedback)
def get_feedback(feedback_id: int, storage: Storage = Depends(get_storage)):
    feedback = storage.get_feedback(feedback_id)
    if feedback is None:
        raise HTTPException(status_code=404, detail="Feedback not found")
    return feedback


# --------- App ---------

def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"message": format_validation_error(exc.errors())})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"message": exc.detail})

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"message": str(exc)})

    @app.exception_handler(ConflictError)
    @app.exception_handler(InvalidTransitionError)
    async def conflict_handler(request: Request, exc: Exception):
        return JSONResponse(status_code=409, content={"message": str(exc)})

    @app.exception_handler(Exception)
    async def internal_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"message": "Internal server error"})


def create_app(settings: Optional[Settings] = None, storage: Optional[Storage] = None) -> FastAPI:
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client, db = database.connect(settings.database_url, settings.database_name)
        app.state.db = db
        app.state.storage = storage if storage is not None else build_storage(settings, db)
        if settings.seed_demo_providers:
            seed_demo_providers(app.state.storage)
        try:
            yield
        finally:
            if client is not None:
                client.close()

    app = FastAPI(title="FreightMatch API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    @app.get("/")
    def read_root():
        return {"message": "FreightMatch backend running"}

    @app.get("/test")
    def test_database(request: Request):
        response = {
            "backend": "✅ Running",
            "storage": request.app.state.storage.name,
        }
        response.update(database.describe(request.app.state.db, settings.database_url))
        return response

    app.include_router(router)
    return app


settings = Settings.from_env()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
app = create_app(settings)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
