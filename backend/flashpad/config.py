"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    api_prefix: str = "/api"
    project_name: str = "Flash Sandbox API"
    allow_origins: list[str] = ["http://localhost:8080", "http://localhost:5173"]
    database_url: str = "sqlite:///../flashpad.db"
    sandbox_ttl: int = 43200
    max_content_size: int = 256 * 1024
    system_identity: str = "Système"
    purge_identity: str = "Système (purge TTL)"
    jwt_secret: str = "flashpad-development-secret-change-me"
    jwt_exp_minutes: int = 60 * 24 * 7
    auth_feature_enabled: bool = True
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8080
    outbox_limit: int = 64


settings = Settings()
