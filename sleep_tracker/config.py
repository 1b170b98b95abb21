from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Storage
    db_path: str = "sleep_history_database.db"
    schema_version: int = 1
    busy_timeout_ms: int = 5000

    # Logging
    log_level: str = "INFO"

    # Server
    host: str = "127.0.0.1"
    port: int = 8000

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
