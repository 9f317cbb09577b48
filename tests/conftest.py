import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from main import create_app
from schemas import (
    AvailabilityStatus,
    BidCreate,
    CargoType,
    CargoCondition,
    CurrencyType,
    FeedbackCreate,
    OnTimePerformance,
    ProviderCreate,
    ProviderStatus,
    ReuseStatus,
    ServiceArea,
    ShipmentRequestCreate,
    VehicleType,
)
from storage import MemStorage, MongoStorage


@pytest.fixture(params=["memory", "mongo"])
def storage(request):
    """Every storage test runs against both backends."""
    if request.param == "mongo":
        return MongoStorage(mongomock.MongoClient()["freightmatch_test"])
    return MemStorage()


@pytest.fixture
def provider_data():
    def _make(**overrides):
        fields = {
            "company_name": "Transportes del Norte",
            "rfc": "TDN850101ABC",
            "vehicle_types": [VehicleType.DRY_VAN],
            "service_areas": [ServiceArea.NORTH],
            "currency": CurrencyType.MXN,
            "status": ProviderStatus.APPROVED,
        }
        fields.update(overrides)
        return ProviderCreate(**fields)
    return _make


@pytest.fixture
def request_data():
    def _make(**overrides):
        fields = {
            "requestor_name": "Laura Méndez",
            "company": "Importaciones Globales S.A.",
            "cargo_type": CargoType.GENERAL,
            "weight": 1500,
            "pickup_address": "Av. Industrial 123, Zona Central, CDMX",
            "delivery_address": "Blvd. Logístico 456, Zona Norte, Monterrey",
            "pickup_date": "2025-04-15T09:00:00",
            "delivery_date": "2025-04-17T14:00:00",
            "vehicle_type": VehicleType.DRY_VAN,
        }
        fields.update(overrides)
        return ShipmentRequestCreate(**fields)
    return _make


@pytest.fixture
def bid_data():
    def _make(shipment_request_id, provider_id, **overrides):
        fields = {
            "shipment_request_id": shipment_request_id,
            "provider_id": provider_id,
            "price": 2500,
            "currency": CurrencyType.USD,
            "transit_time": 2,
            "transit_time_unit": "days",
            "availability": AvailabilityStatus.CONFIRMED,
        }
        fields.update(overrides)
        return BidCreate(**fields)
    return _make


@pytest.fixture
def feedback_data():
    def _make(shipment_request_id, provider_id, rating, **overrides):
        fields = {
            "shipment_request_id": shipment_request_id,
            "provider_id": provider_id,
            "rating": rating,
            "on_time_performance": OnTimePerformance.ON_TIME,
            "cargo_condition": CargoCondition.PERFECT,
            "would_reuse": ReuseStatus.YES,
        }
        fields.update(overrides)
        return FeedbackCreate(**fields)
    return _make


def _client(**settings_overrides):
    fields = {"seed_demo_providers": True}
    fields.update(settings_overrides)
    return TestClient(create_app(Settings(**fields), storage=MemStorage()))


@pytest.fixture
def client():
    """Demo mode on, three seeded approved providers."""
    with _client() as c:
        yield c


@pytest.fixture
def strict_client():
    """Demo mode off: real shipment request validation and 404s."""
    with _client(shipment_requests_demo_mode=False, seed_demo_providers=False) as c:
        yield c
