import os
from typing import Optional

import pydantic
from pydantic import BaseModel


class NotifierConfig(BaseModel):
    window_seconds: float = 300.0
    sweep_interval_seconds: float = 600.0
    evolution_api_url: str = "http://localhost:8080"
    evolution_timeout_seconds: float = 10.0
    admin_instance: str = "admin"
    admin_instance_apikey: Optional[str] = None
    admin_whatsapp: str = ""

    @pydantic.field_validator(
        "window_seconds", "sweep_interval_seconds", "evolution_timeout_seconds"
    )
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Durations must be positive")
        return v

    @classmethod
    def from_env(cls) -> "NotifierConfig":
        return cls(
            window_seconds=float(os.getenv("AGGREGATION_WINDOW_SECONDS", "300")),
            sweep_interval_seconds=float(os.getenv("AGGREGATION_SWEEP_SECONDS", "600")),
            evolution_api_url=os.getenv("EVOLUTION_API_URL", "http://localhost:8080"),
            evolution_timeout_seconds=float(
                os.getenv("EVOLUTION_TIMEOUT_SECONDS", "10")
            ),
            admin_instance=os.getenv("ADMIN_INSTANCE", "admin"),
            admin_instance_apikey=os.getenv("ADMIN_INSTANCE_APIKEY") or None,
            admin_whatsapp=os.getenv("ADMIN_WHATSAPP", ""),
        )


__all__ = ["NotifierConfig"]
