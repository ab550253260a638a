import os
from dataclasses import dataclass, field
from typing import List


def _flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


DEFAULT_ADMIN_PASSWORD = "admin"


@dataclass
class Settings:
    """Runtime settings, read from the environment by `from_env`."""
    database_url: str = "sqlite:///./storefront.db"
    environment: str = "development"
    seed_catalog: bool = True
    admin_username: str = "admin"
    admin_password: str = DEFAULT_ADMIN_PASSWORD
    session_ttl_hours: int = 168
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    def __post_init__(self):
        if self.environment == "production" and self.admin_password == DEFAULT_ADMIN_PASSWORD:
            raise ValueError("ADMIN_PASSWORD must be changed from the default in production")

    @classmethod
    def from_env(cls) -> "Settings":
        environment = os.getenv("ENVIRONMENT", "development")
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            database_url=os.getenv("DATABASE_URL", "sqlite:///./storefront.db"),
            environment=environment,
            seed_catalog=_flag("SEED_CATALOG", environment != "production"),
            admin_username=os.getenv("ADMIN_USERNAME", "admin"),
            admin_password=os.getenv("ADMIN_PASSWORD", DEFAULT_ADMIN_PASSWORD),
            session_ttl_hours=int(os.getenv("SESSION_TTL_HOURS", "168")),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
