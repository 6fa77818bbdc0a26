from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    PROJECT_NAME: str = "Plant Alerts API"
    VERSION: str = "1.0.0"
    API_V1_PREFIX: str = "/v1"

    # Database (required)
    DATABASE_URL: str
    CREATE_TABLES: bool = True

    # JWT (required)
    SECRET_KEY: str
    ALGORITHM: str = "HS256"

    # Logging
    LOG_LEVEL: str = "INFO"

    # Poller
    POLLER_ENABLED: bool = True
    POLLER_INTERVAL_SECONDS: float = 0.2
    POLLER_READ_TIMEOUT_SECONDS: float = 2.0
    POLLER_RECONNECT_DELAY_SECONDS: float = 5.0

    # Device reader: "simulated" or "http"
    DEVICE_READER: str = "simulated"
    DEVICE_GATEWAY_URL: str = "http://localhost:4840"
    TAG_CATALOG_PATH: str | None = None

    # Alert ownership
    DEVICE_OWNERS: str = ""
    DEFAULT_OPERATOR_ID: str = "operators"

    # Push channel
    PUSH_QUEUE_SIZE: int = 100
    PUSH_SEND_TIMEOUT_SECONDS: float = 1.0

    # Feed
    FEED_PAGE_SIZE: int = 6

    # CORS
    ALLOWED_ORIGINS: str = "*"

    model_config = {"env_file": ".env", "extra": "ignore"}

    @property
    def cors_origins(self) -> list[str]:
        if self.ALLOWED_ORIGINS == "*":
            return ["*"]
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    @property
    def device_owners(self) -> dict[str, str]:
        """Parses ``Machine1=op-1,Machine2=op-2`` into a device -> operator map."""
        owners = {}
        for pair in self.DEVICE_OWNERS.split(","):
            device, sep, operator = pair.partition("=")
            if sep and device.strip() and operator.strip():
                owners[device.strip()] = operator.strip()
        return owners


settings = Settings()
