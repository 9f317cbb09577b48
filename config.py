"""Environment-driven settings for the API."""
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root if present
_env_path = Path(__file__).resolve().parent / ".env"
if _env_path.exists():
    load_dotenv(_env_path)

STORAGE_BACKENDS = ("memory", "mongo")
MATCHING_STRATEGIES = ("position", "scored")


def _bool_env(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None or val.strip() == "":
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


def _choice_env(key: str, choices, default: str) -> str:
    val = (os.getenv(key) or "").strip().lower()
    if not val:
        return default
    if val not in choices:
        raise ValueError(f"{key} must be one of {', '.join(choices)}, got {val!r}")
    return val


@dataclass
class Settings:
    database_url: str = ""
    database_name: str = "freightmatch"
    storage_backend: str = "memory"
    matching_strategy: str = "position"
    # Canned POST /api/shipment-requests response and fallback record on GET
    shipment_requests_demo_mode: bool = True
    seed_demo_providers: bool = True
    cors_origins: tuple = ("*",)
    log_level: str = "INFO"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            database_url=os.getenv("DATABASE_URL", ""),
            database_name=os.getenv("DATABASE_NAME", "freightmatch"),
            storage_backend=_choice_env("STORAGE_BACKEND", STORAGE_BACKENDS, "memory"),
            matching_strategy=_choice_env("MATCHING_STRATEGY", MATCHING_STRATEGIES, "position"),
            shipment_requests_demo_mode=_bool_env("SHIPMENT_REQUESTS_DEMO_MODE", True),
            seed_demo_providers=_bool_env("SEED_DEMO_PROVIDERS", True),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()) or ("*",),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            port=int(os.getenv("PORT", 8000)),
        )
