"""Demo provider directory loaded on startup so matching has something to rank."""
import logging

from schemas import CertificationType, CurrencyType, ProviderCreate, ProviderStatus, ServiceArea, VehicleType

logger = logging.getLogger(__name__)

DEMO_PROVIDERS = [
    {
        "company_name": "Transportes Fast",
        "vehicle_types": [VehicleType.DRY_VAN, VehicleType.FLATBED, VehicleType.CONTAINER],
        "service_areas": [ServiceArea.NORTH, ServiceArea.CENTRAL],
        "certifications": [CertificationType.ISO9001, CertificationType.OEA],
        "currency": CurrencyType.MXN,
        "metrics": {"score": 4.5, "on_time_rate": 98, "response_time": 0.8, "completed_jobs": 24},
    },
    {
        "company_name": "EcoTransport",
        "vehicle_types": [VehicleType.DRY_VAN, VehicleType.REFRIGERATED],
        "service_areas": [ServiceArea.NATIONWIDE],
        "certifications": [CertificationType.ISO14001],
        "currency": CurrencyType.USD,
        "metrics": {"score": 4.0, "on_time_rate": 97, "response_time": 1.2, "completed_jobs": 18},
    },
    {
        "company_name": "Mex Logistics",
        "vehicle_types": [VehicleType.DRY_VAN, VehicleType.FLATBED],
        "service_areas": [ServiceArea.SOUTH, ServiceArea.EAST],
        "certifications": [],
        "currency": CurrencyType.MXN,
        "metrics": {"score": 3.5, "on_time_rate": 95, "response_time": 1.5, "completed_jobs": 16},
    },
]


def seed_demo_providers(storage) -> int:
    """Insert the demo providers into an empty directory. Returns how many were added."""
    if storage.get_all_providers():
        return 0
    for number, entry in enumerate(DEMO_PROVIDERS, start=1):
        entry = dict(entry)
        metrics = entry.pop("metrics")
        provider = storage.create_provider(ProviderCreate(
            **entry,
            rfc=f"RFC{number}12345XYZ",
            status=ProviderStatus.APPROVED,
        ))
        # Track record is demo data; real scores come from feedback
        storage.update_provider_metrics(provider.id, allow_score=True, user_id=provider.id, **metrics)
    logger.info("Seeded %d demo providers", len(DEMO_PROVIDERS))
    return len(DEMO_PROVIDERS)
