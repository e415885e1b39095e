from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # API Configuration
    host: str = "0.0.0.0"
    port: int = 8090
    debug: bool = False

    # Migration session
    source: str = "sidekiq"
    session_id: str = "live-migration"
    # Dual run starts at boot with this split; None leaves the session idle
    initial_percentage: int | None = 10

    # Target job system
    target_url: str = "http://localhost:8080"
    target_api_key: str | None = None

    # Limits and timeouts (seconds)
    max_body_kb: int = 1024
    forward_timeout: float = 30.0
    connect_timeout: float = 30.0

    # Batch transfer
    import_batch_size: int = 100

    # CORS
    cors_origins: list = ["*"]

    # Logging
    log_level: str = "INFO"

    class Config:
        env_prefix = "JOBMIGRATE_"
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def max_body_bytes(self) -> int:
        return self.max_body_kb * 1024


settings = Settings()
