from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    """
    Notification client configuration settings.
    
    Loads values from environment variables or .env file.
    """
    PROJECT_NAME: str = "Notifeed"

    # BACKEND
    BACKEND_URL: str = Field(default="http://localhost:5000", description="Base URL of the notification backend")
    API_PREFIX: str = "/api"
    SOCKET_PATH: str = "socket.io"

    # TRANSPORT
    MAX_CONCURRENT_REQUESTS: int = 5
    REQUEST_TIMEOUT_SECONDS: float = 10.0

    # FEED
    FEED_MAX_ITEMS: int = 100
    DEFAULT_PAGE_LIMIT: int = 20

    # FETCH COORDINATION
    FETCH_DEBOUNCE_SECONDS: float = 0.5
    FETCH_MIN_INTERVAL_SECONDS: float = 2.0

    # REALTIME
    SOCKET_RECONNECT_ATTEMPTS: int = 5
    SOCKET_RECONNECT_DELAY_SECONDS: float = 1.0
    SOCKET_CONNECT_TIMEOUT_SECONDS: float = 5.0

    LOG_LEVEL: str = "INFO"

    @field_validator("BACKEND_URL", mode="before")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """
        Normalizes the backend URL so paths can be joined with a leading slash.
        """
        if isinstance(v, str):
            return v.rstrip("/")
        return v

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

settings = Settings()
