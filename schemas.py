"""
Schemas for the freight quote matching backend

Each record model corresponds to a storage collection. The collection name is the
lowercased class name by convention (e.g., ShipmentRequest -> "shipmentrequest").

Field names are snake_case in Python and camelCase on the wire; both spellings are
accepted on input.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --------- Enums ---------

class UserRole(str, Enum):
    AGENT = "agent"
    PROVIDER = "provider"


class PaymentTerms(str, Enum):
    ON_DELIVERY = "On Delivery"
    CREDIT = "Credit"


class CreditTerms(str, Enum):
    DAYS_7 = "7 days"
    DAYS_15 = "15 days"
    DAYS_30 = "30 days"
    DAYS_60 = "60 days"
    NA = "N/A"


class ProviderType(str, Enum):
    NATIONAL = "National"
    PORTS = "Ports"
    TRANSFER = "Transfer"
    INTERNATIONAL = "International"
    TRANSSHIPMENT = "Transshipment"


class EquipmentHandled(str, Enum):
    CAJA_SECA = "Caja Seca"
    PLATAFORMA = "Plataforma"
    PORTACONTENEDOR_SENCILLO = "Portacontenedor Sencillo"
    PORTACONTENEDOR_FULL = "Portacontenedor Full"
    TORTON = "Torton"
    RABON = "Rabón"
    TRES_MEDIO = "3½"
    REFRIGERADO = "Refrigerado"
    LOW_BOY = "Low boy"
    STEP_DECK = "Step Deck"
    NISSAN = "Nissan"
    ESTAQUITA = "Estaquita"
    MADRINA = "Madrina"
    CONSOLIDADO = "Consolidado"
    OTHER = "Other"


class PortsCovered(str, Enum):
    MANZANILLO = "Manzanillo"
    LAZARO_CARDENAS = "Lázaro Cárdenas"
    ALTAMIRA = "Altamira"
    VERACRUZ = "Veracruz"
    ENSENADA = "Ensenada"
    PUERTO_PROGRESO = "Puerto Progreso"
    OTHER = "Other"


class AirportsCovered(str, Enum):
    AIFA = "AIFA"
    AICM = "AICM"
    MONTERREY = "Monterrey"
    GUADALAJARA = "Guadalajara"
    OTHER = "Other"


class BorderCrossings(str, Enum):
    NUEVO_LAREDO = "Nuevo Laredo"
    COLOMBIA = "Colombia"
    JUAREZ = "Juárez"
    TIJUANA = "Tijuana"
    MEXICALI = "Mexicali"
    NOGALES = "Nogales"
    REYNOSA = "Reynosa"
    MATAMOROS = "Matamoros"
    NUEVO_PROGRESO = "Nuevo Progreso"
    PIEDRAS_NEGRAS = "Piedras Negras"
    OTHER = "Other"
    NA = "N/A"


class CargoTypesHandled(str, Enum):
    GENERAL = "General"
    REFRIGERATED = "Refrigerated"
    HAZARDOUS = "Hazardous"
    OVERSIZED_OVERWEIGHT = "Oversized/Overweight"
    OTHER = "Other"


class VehicleType(str, Enum):
    DRY_VAN = "Dry Van"
    FLATBED = "Flatbed"
    REFRIGERATED = "Refrigerated"
    TANKER = "Tanker"
    CONTAINER = "Container"
    OTHER = "Other"


class ServiceArea(str, Enum):
    NORTH = "North"
    CENTRAL = "Central"
    SOUTH = "South"
    EAST = "East"
    WEST = "West"
    NATIONWIDE = "Nationwide"


class CertificationType(str, Enum):
    OEA = "OEA"
    ISO9001 = "ISO 9001"
    ISO14001 = "ISO 14001"
    CTPAT = "C-TPAT"
    OTHER = "Other"


class CurrencyType(str, Enum):
    MXN = "MXN"
    USD = "USD"


class ProviderStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class ShipmentRequestStatus(str, Enum):
    PENDING = "Pending"
    ASSIGNED = "Assigned"
    IN_TRANSIT = "In Transit"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class CargoType(str, Enum):
    GENERAL = "General Merchandise"
    PERISHABLE = "Perishable Goods"
    HAZARDOUS = "Hazardous Materials"
    FRAGILE = "Fragile Items"
    AUTOMOTIVE = "Automotive Parts"


class PackagingType(str, Enum):
    PALLETS = "Pallets"
    BOXES = "Boxes"
    CRATES = "Crates"
    DRUMS = "Drums"
    BULK = "Bulk"


class AdditionalEquipment(str, Enum):
    LIFTGATE = "Liftgate"
    PALLET_JACK = "Pallet Jack"
    LOAD_BARS = "Load Bars"
    BLANKETS = "Blankets"


class BidStatus(str, Enum):
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"


class AvailabilityStatus(str, Enum):
    CONFIRMED = "Confirmed - Available as requested"
    PARTIAL = "Partial - Available with adjustments"
    UNAVAILABLE = "Unavailable - Cannot fulfill request"


class OnTimePerformance(str, Enum):
    EARLY = "early"
    ON_TIME = "ontime"
    SLIGHT_DELAY = "slight_delay"
    SIGNIFICANT_DELAY = "significant_delay"
    VERY_LATE = "very_late"


class CargoCondition(str, Enum):
    PERFECT = "perfect"
    MINOR_ISSUES = "minor_issues"
    SOME_DAMAGE = "some_damage"
    SIGNIFICANT_DAMAGE = "significant_damage"


class ReuseStatus(str, Enum):
    YES = "yes"
    MAYBE = "maybe"
    NO = "no"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --------- Users ---------

class UserCreate(CamelModel):
    username: str = Field(..., min_length=1, description="Unique login name")
    password: str = Field(..., description="Mock password, no real authentication")
    role: UserRole
    company_name: Optional[str] = None


class User(UserCreate):
    id: int
    created_at: datetime = Field(default_factory=utcnow)


# --------- Providers ---------

class BankingReference(CamelModel):
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class ContactInfo(CamelModel):
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None


class ProviderCreate(CamelModel):
    company_name: str = Field(..., description="Carrier legal name")
    rfc: str = Field(..., description="Mexican tax identifier")
    vehicle_types: List[VehicleType]
    service_areas: List[ServiceArea]
    currency: CurrencyType
    certifications: Optional[List[CertificationType]] = None
    status: ProviderStatus = ProviderStatus.PENDING

    payment_terms: Optional[PaymentTerms] = None
    credit_terms: Optional[CreditTerms] = None
    banking_references: Optional[List[BankingReference]] = None
    quotation_contact: Optional[ContactInfo] = None
    provider_type: Optional[ProviderType] = None
    equipment_handled: Optional[List[EquipmentHandled]] = None
    ports_covered: Optional[List[PortsCovered]] = None
    airports_covered: Optional[List[AirportsCovered]] = None
    border_crossings: Optional[List[BorderCrossings]] = None
    cargo_types_handled: Optional[List[CargoTypesHandled]] = None
    storage_yards_location: Optional[List[str]] = None


class Provider(ProviderCreate):
    id: int
    user_id: int = 0
    score: float = Field(0.0, ge=0, le=5, description="Mean feedback rating")
    on_time_rate: float = 0.0
    response_time: float = 0.0
    completed_jobs: int = 0
    created_at: datetime = Field(default_factory=utcnow)


class MatchedProvider(Provider):
    match_percentage: int


# --------- Shipment requests ---------

class ShipmentRequestCreate(CamelModel):
    user_id: Optional[int] = None
    requestor_name: str
    company: str
    cargo_type: CargoType
    weight: float
    volume: Optional[float] = None
    packaging_type: Optional[PackagingType] = None
    special_requirements: Optional[str] = None
    pickup_address: str
    delivery_address: str
    # Dates stay opaque strings end to end
    pickup_date: str
    delivery_date: str
    pickup_contact: Optional[str] = None
    delivery_contact: Optional[str] = None
    vehicle_type: VehicleType
    vehicle_size: Optional[str] = None
    additional_equipment: Optional[List[AdditionalEquipment]] = None


class ShipmentRequest(ShipmentRequestCreate):
    id: int
    request_id: str
    user_id: int = 0
    status: ShipmentRequestStatus = ShipmentRequestStatus.PENDING
    assigned_provider_id: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)


# --------- Bids ---------

class BidCreate(CamelModel):
    shipment_request_id: int
    provider_id: int
    price: float = Field(..., gt=0)
    currency: CurrencyType
    transit_time: float = Field(..., gt=0)
    transit_time_unit: str
    availability: AvailabilityStatus
    valid_until: Optional[datetime] = None
    notes: Optional[str] = None

    @field_validator("valid_until", mode="before")
    @classmethod
    def blank_valid_until(cls, value):
        if value == "":
            return None
        return value


class Bid(BidCreate):
    id: int
    status: BidStatus = BidStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)


# --------- Feedback ---------

class FeedbackCreate(CamelModel):
    shipment_request_id: int
    provider_id: int
    rating: int = Field(..., ge=1, le=5)
    on_time_performance: OnTimePerformance
    cargo_condition: CargoCondition
    comments: Optional[str] = None
    would_reuse: ReuseStatus


class Feedback(FeedbackCreate):
    id: int
    created_at: datetime = Field(default_factory=utcnow)


# --------- Request bodies ---------

class LoginRequest(CamelModel):
    username: Optional[str] = None
    role: Optional[str] = None


class LoginResponse(CamelModel):
    user: User


class ProviderStatusUpdate(CamelModel):
    status: ProviderStatus


class ShipmentRequestStatusUpdate(CamelModel):
    status: ShipmentRequestStatus


class BidStatusUpdate(CamelModel):
    status: BidStatus


class AssignProviderRequest(CamelModel):
    provider_id: Optional[int] = None
