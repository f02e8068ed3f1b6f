from datetime import date

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DOMAIN_API_BASE_URL: str = "http://localhost:8080/api"
    DOMAIN_API_TIMEOUT: float = 30.0
    DOMAIN_CACHE_TTL_SECONDS: int = 300
    JWT_SECRET: str = "scn-console-jwt-secret-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    ROLE_OVERRIDE_ENABLED: bool = False
    DEFAULT_DATE_FROM: date = date(2024, 1, 1)
    DEFAULT_DATE_TO: date = date(2024, 1, 16)
    CORS_ORIGINS: list[str] = ["http://localhost:5173", "http://localhost:8081"]
    AUDIT_STORAGE_PATH: str = "./audit_storage"
    AUDIT_RETENTION_INTERVAL_HOURS: int = 24

    class Config:
        env_file = ".env"


settings = Settings()
