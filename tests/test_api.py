"""
HTTP tests through the FastAPI test client.

Covered:
- Mock login (create on first use, idempotent afterwards)
- Provider registration, listing, top, status
- Shipment requests in demo mode and with validation
- Matching, assignment, bids, feedback
- Error mapping (400 / 404 / 409)
"""

import pytest
from fastapi.testclient import TestClient

from config import Settings
from main import create_app
from schemas import UserCreate, UserRole
from storage import MemStorage

PROVIDER_BODY = {
    "companyName": "Fletes Bajío",
    "rfc": "FBA900101XYZ",
    "vehicleTypes": ["Dry Van", "Refrigerated"],
    "serviceAreas": ["Central"],
    "currency": "MXN",
    "certifications": ["ISO 9001"],
    "paymentTerms": "Credit",
    "creditTerms": "30 days",
    "quotationContact": {"name": "Rosa Díaz", "email": "rosa@fletesbajio.mx"},
    "portsCovered": ["Manzanillo"],
}

REQUEST_BODY = {
    "requestorName": "Laura Méndez",
    "company": "Importaciones Globales S.A.",
    "cargoType": "General Merchandise",
    "weight": 1500,
    "volume": 25,
    "packagingType": "Pallets",
    "pickupAddress": "Av. Industrial 123, Zona Central, CDMX",
    "deliveryAddress": "Blvd. Logístico 456, Zona Norte, Monterrey",
    "pickupDate": "2025-04-15T09:00:00",
    "deliveryDate": "2025-04-17T14:00:00",
    "vehicleType": "Dry Van",
    "additionalEquipment": ["Liftgate"],
    "userId": 3,
}


def _bid_body(shipment_request_id=1, provider_id=1, **overrides):
    body = {
        "shipmentRequestId": shipment_request_id,
        "providerId": provider_id,
        "price": 2500,
        "currency": "USD",
        "transitTime": 2,
        "transitTimeUnit": "days",
        "availability": "Confirmed - Available as requested",
        "validUntil": "2025-05-01T00:00:00",
        "notes": "Includes insurance",
    }
    body.update(overrides)
    return body


def _feedback_body(shipment_request_id, provider_id, rating):
    return {
        "shipmentRequestId": shipment_request_id,
        "providerId": provider_id,
        "rating": rating,
        "onTimePerformance": "ontime",
        "cargoCondition": "perfect",
        "wouldReuse": "yes",
        "comments": "Sin incidentes",
    }


@pytest.mark.api
class TestRoot:

    def test_root(self, client):
        assert client.get("/").status_code == 200

    def test_status_without_database(self, client):
        body = client.get("/test").json()

        assert body["storage"] == "memory"
        assert body["database_url"] == "❌ Not Set"
        assert body["connection_status"] == "Not Connected"


@pytest.mark.api
class TestLogin:

    def test_new_agent_created(self, client):
        response = client.post("/api/login", json={"username": "laura", "role": "agent"})

        assert response.status_code == 200
        user = response.json()["user"]
        assert user["username"] == "laura"
        assert user["role"] == "agent"
        assert user["companyName"] == "Importaciones Globales S.A."

    def test_provider_default_company(self, client):
        user = client.post("/api/login", json={"username": "carlos", "role": "provider"}).json()["user"]

        assert user["companyName"] == "Transportes Rápido"

    def test_second_login_same_user(self, client):
        first = client.post("/api/login", json={"username": "laura", "role": "agent"}).json()["user"]
        second = client.post("/api/login", json={"username": "laura", "role": "agent"}).json()["user"]

        assert first["id"] == second["id"]

    @pytest.mark.parametrize("body", [
        {"username": "laura", "role": "admin"},
        {"username": "", "role": "agent"},
        {"role": "agent"},
    ])
    def test_invalid_login(self, client, body):
        response = client.post("/api/login", json=body)

        assert response.status_code == 400
        assert response.json()["message"] == "Invalid username or role"


@pytest.mark.api
class TestProviders:

    def test_seeded_directory(self, client):
        providers = client.get("/api/providers").json()

        assert [p["companyName"] for p in providers] == ["Transportes Fast", "EcoTransport", "Mex Logistics"]
        assert all(p["status"] == "Approved" for p in providers)

    def test_register_provider(self, client):
        response = client.post("/api/providers", json=PROVIDER_BODY)

        assert response.status_code == 201
        provider = response.json()
        assert provider["id"] == 4
        assert provider["status"] == "Pending"
        assert provider["score"] == 0
        assert provider["quotationContact"]["name"] == "Rosa Díaz"
        assert client.get(f"/api/providers/{provider['id']}").json()["rfc"] == "FBA900101XYZ"

    def test_register_provider_invalid(self, client):
        body = dict(PROVIDER_BODY, vehicleTypes=["Hovercraft"])
        del body["rfc"]

        response = client.post("/api/providers", json=body)

        assert response.status_code == 400
        message = response.json()["message"]
        assert message.startswith("Validation error")
        assert "rfc" in message

    def test_top_providers(self, client):
        top = client.get("/api/providers/top", params={"limit": 2}).json()

        assert [p["score"] for p in top] == [4.5, 4.0]

    def test_top_providers_default_limit(self, client):
        client.post("/api/providers", json=PROVIDER_BODY)

        assert len(client.get("/api/providers/top").json()) == 3

    def test_missing_provider(self, client):
        response = client.get("/api/providers/404")

        assert response.status_code == 404
        assert response.json()["message"] == "Provider not found"

    def test_update_status(self, client):
        provider_id = client.post("/api/providers", json=PROVIDER_BODY).json()["id"]

        response = client.patch(f"/api/providers/{provider_id}/status", json={"status": "Approved"})

        assert response.status_code == 200
        assert response.json()["status"] == "Approved"

    def test_update_status_invalid(self, client):
        assert client.patch("/api/providers/1/status", json={"status": "Maybe"}).status_code == 400

    def test_update_status_missing_provider(self, client):
        assert client.patch("/api/providers/404/status", json={"status": "Approved"}).status_code == 404


@pytest.mark.api
class TestShipmentRequestsDemoMode:

    def test_create_returns_canned_payload(self, client):
        response = client.post("/api/shipment-requests", json={"anything": "goes"})

        assert response.status_code == 201
        body = response.json()
        assert body["id"] == 999
        assert body["requestId"] == "REQ-DEMO-9999"
        assert "createdAt" in body

    def test_create_does_not_store(self, client):
        client.post("/api/shipment-requests", json=REQUEST_BODY)

        assert client.get("/api/shipment-requests", params={"userId": 3}).json() == []

    def test_unknown_id_returns_fallback(self, client):
        response = client.get("/api/shipment-requests/777")

        assert response.status_code == 200
        body = response.json()
        assert body["requestId"] == "SHP2025001"
        assert body["status"] == "Pending"

    def test_match(self, client):
        matched = client.get("/api/shipment-requests/777/match").json()

        assert [p["matchPercentage"] for p in matched] == [95, 88, 81]
        assert [p["companyName"] for p in matched] == ["Transportes Fast", "EcoTransport", "Mex Logistics"]

    def test_match_skips_unapproved(self, client):
        client.patch("/api/providers/1/status", json={"status": "Rejected"})
        client.post("/api/providers", json=PROVIDER_BODY)

        matched = client.get("/api/shipment-requests/1/match").json()

        assert [p["id"] for p in matched] == [2, 3]
        assert [p["matchPercentage"] for p in matched] == [95, 88]


@pytest.mark.api
class TestShipmentRequests:

    def test_create_and_fetch(self, strict_client):
        response = strict_client.post("/api/shipment-requests", json=REQUEST_BODY)

        assert response.status_code == 201
        created = response.json()
        assert created["requestId"] == f"REQ-{1234 + created['id']}"
        assert created["status"] == "Pending"
        assert created["pickupDate"] == "2025-04-15T09:00:00"
        assert strict_client.get(f"/api/shipment-requests/{created['id']}").json() == created

    def test_create_invalid(self, strict_client):
        body = dict(REQUEST_BODY, cargoType="Livestock")

        response = strict_client.post("/api/shipment-requests", json=body)

        assert response.status_code == 400
        assert "cargoType" in response.json()["message"]

    def test_list_by_user(self, strict_client):
        strict_client.post("/api/shipment-requests", json=REQUEST_BODY)
        strict_client.post("/api/shipment-requests", json=dict(REQUEST_BODY, userId=9))

        assert len(strict_client.get("/api/shipment-requests", params={"userId": 3}).json()) == 1
        assert strict_client.get("/api/shipment-requests").json() == []

    def test_unknown_id_is_404(self, strict_client):
        assert strict_client.get("/api/shipment-requests/777").status_code == 404

    def test_update_status(self, strict_client):
        request_id = strict_client.post("/api/shipment-requests", json=REQUEST_BODY).json()["id"]

        response = strict_client.patch(f"/api/shipment-requests/{request_id}/status", json={"status": "In Transit"})

        assert response.json()["status"] == "In Transit"

    def test_update_status_missing(self, strict_client):
        response = strict_client.patch("/api/shipment-requests/404/status", json={"status": "Completed"})

        assert response.status_code == 404

    def test_assign_provider(self, strict_client):
        provider_id = strict_client.post("/api/providers", json=PROVIDER_BODY).json()["id"]
        request_id = strict_client.post("/api/shipment-requests", json=REQUEST_BODY).json()["id"]

        response = strict_client.post(f"/api/shipment-requests/{request_id}/assign", json={"providerId": provider_id})

        assert response.status_code == 200
        assert response.json()["status"] == "Assigned"
        assert response.json()["assignedProviderId"] == provider_id

    def test_assign_requires_provider_id(self, strict_client):
        request_id = strict_client.post("/api/shipment-requests", json=REQUEST_BODY).json()["id"]

        response = strict_client.post(f"/api/shipment-requests/{request_id}/assign", json={})

        assert response.status_code == 400
        assert response.json()["message"] == "Provider ID is required"

    def test_assign_unknown_provider(self, strict_client):
        request_id = strict_client.post("/api/shipment-requests", json=REQUEST_BODY).json()["id"]

        response = strict_client.post(f"/api/shipment-requests/{request_id}/assign", json={"providerId": 404})

        assert response.status_code == 404
        assert strict_client.get(f"/api/shipment-requests/{request_id}").json()["status"] == "Pending"


@pytest.mark.api
class TestBids:

    def test_create_and_accept(self, client):
        response = client.post("/api/bids", json=_bid_body())

        assert response.status_code == 201
        bid = response.json()
        assert bid["status"] == "Pending"
        assert bid["price"] == 2500
        assert bid["currency"] == "USD"

        accepted = client.patch(f"/api/bids/{bid['id']}/status", json={"status": "Accepted"})

        assert accepted.status_code == 200
        assert accepted.json()["status"] == "Accepted"

    def test_blank_valid_until(self, client):
        bid = client.post("/api/bids", json=_bid_body(validUntil="")).json()

        assert bid["validUntil"] is None

    def test_settled_bid_conflict(self, client):
        bid_id = client.post("/api/bids", json=_bid_body()).json()["id"]
        client.patch(f"/api/bids/{bid_id}/status", json={"status": "Rejected"})

        response = client.patch(f"/api/bids/{bid_id}/status", json={"status": "Accepted"})

        assert response.status_code == 409

    def test_list_by_request_and_provider(self, client):
        client.post("/api/bids", json=_bid_body(1, 1))
        client.post("/api/bids", json=_bid_body(1, 2))
        client.post("/api/bids", json=_bid_body(2, 1))

        assert len(client.get("/api/bids", params={"shipmentRequestId": 1}).json()) == 2
        assert len(client.get("/api/bids", params={"providerId": 1}).json()) == 2

    def test_list_requires_filter(self, client):
        response = client.get("/api/bids")

        assert response.status_code == 400
        assert response.json()["message"] == "Missing required query parameter"

    def test_missing_bid(self, client):
        assert client.get("/api/bids/404").status_code == 404
        assert client.patch("/api/bids/404/status", json={"status": "Accepted"}).status_code == 404

    def test_invalid_price(self, client):
        assert client.post("/api/bids", json=_bid_body(price=-1)).status_code == 400


@pytest.mark.api
class TestFeedback:

    def test_feedback_updates_score(self, client):
        for request_id, rating in [(1, 5), (2, 2), (3, 4)]:
            response = client.post("/api/feedback", json=_feedback_body(request_id, 3, rating))
            assert response.status_code == 201

        provider = client.get("/api/providers/3").json()
        assert provider["score"] == pytest.approx(11 / 3)
        assert provider["completedJobs"] == 3

    def test_lookups(self, client):
        created = client.post("/api/feedback", json=_feedback_body(7, 2, 4)).json()

        assert client.get(f"/api/feedback/{created['id']}").json() == created
        assert client.get("/api/feedback", params={"shipmentRequestId": 7}).json() == created
        assert client.get("/api/feedback", params={"shipmentRequestId": 8}).json() is None
        assert client.get("/api/feedback", params={"providerId": 2}).json() == [created]

    def test_rating_out_of_range(self, client):
        assert client.post("/api/feedback", json=_feedback_body(1, 1, 6)).status_code == 400

    def test_list_requires_filter(self, client):
        assert client.get("/api/feedback").status_code == 400

    def test_missing_feedback(self, client):
        assert client.get("/api/feedback/404").status_code == 404


class _LateLookupStorage(MemStorage):
    """Reports a username as unknown once, as if another login raced ahead."""

    def __init__(self):
        super().__init__()
        self.misses = 0

    def get_user_by_username(self, username):
        if self.misses:
            self.misses -= 1
            return None
        return super().get_user_by_username(username)


@pytest.mark.api
class TestLoginRace:

    def test_login_after_concurrent_create(self):
        storage = _LateLookupStorage()
        existing = storage.create_user(UserCreate(username="laura", password="password", role=UserRole.AGENT))
        storage.misses = 1

        with TestClient(create_app(Settings(seed_demo_providers=False), storage=storage)) as c:
            response = c.post("/api/login", json={"username": "laura", "role": "agent"})

        assert response.status_code == 200
        assert response.json()["user"]["id"] == existing.id


@pytest.mark.api
class TestTopProvidersLimit:

    @pytest.mark.parametrize("limit", [0, -1])
    def test_non_positive_limit_rejected(self, client, limit):
        response = client.get("/api/providers/top", params={"limit": limit})

        assert response.status_code == 400
        assert "limit" in response.json()["message"]
