from pydantic_settings import BaseSettings
from typing import Dict, List, Optional


class Settings(BaseSettings):
    # Database
    POSTGRES_USER: str = "securewatch"
    POSTGRES_PASSWORD: str = "password"
    POSTGRES_DB: str = "securewatch"
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    # Overrides the POSTGRES_* settings when set (e.g. sqlite:///./securewatch.db)
    DATABASE_URL: Optional[str] = None

    # Redis
    REDIS_URL: str = "redis://localhost:6379"

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Logging
    LOG_LEVEL: str = "INFO"

    # Policy configuration
    POLICY_CONFIG_PATH: str = "policy.yaml"
    LOAD_POLICIES_ON_STARTUP: bool = False

    # Condition evaluation context
    FREQUENCY_WINDOW_HOURS: int = 24
    BUSINESS_HOURS_START: int = 8
    BUSINESS_HOURS_END: int = 18

    # Execution scheduler
    SCHEDULER_DEDUPLICATE: bool = True

    # Action dispatcher
    DISPATCH_INTERVAL_SECONDS: float = 5.0
    DISPATCH_BATCH_LIMIT: int = 50
    DISPATCH_MAX_WORKERS: int = 4
    DISPATCH_MAX_RETRIES: int = 3
    DISPATCH_RETRY_BACKOFF_SECONDS: float = 30.0
    DISPATCH_STALE_RUNNING_SECONDS: int = 900
    ACTION_TIMEOUT_SECONDS: float = 10.0
    ACTION_TIMEOUTS: Dict[str, float] = {
        "email_alert": 20.0,
        "immediate_alert": 30.0,
        "escalate_incident": 15.0,
    }
    MANAGEMENT_ROLES: List[str] = ["manager", "admin", "security_admin"]

    # Mail transport
    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 25
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_USE_TLS: bool = False
    SMTP_TIMEOUT_SECONDS: float = 10.0
    MAIL_FROM: str = "securewatch@localhost"

    # Behavioral analysis queue
    BEHAVIOR_ANALYSIS_ENABLED: bool = True
    BEHAVIOR_ANALYZER_URL: Optional[str] = None
    BEHAVIOR_ANALYZER_TIMEOUT_SECONDS: float = 30.0
    BEHAVIOR_BATCH_SIZE: int = 5
    BEHAVIOR_FLUSH_INTERVAL_SECONDS: float = 2.0

    class Config:
        env_file = ".env"
        extra = "allow"  # Allow extra environment variables

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    def action_timeout(self, action_type: str) -> float:
        return self.ACTION_TIMEOUTS.get(action_type, self.ACTION_TIMEOUT_SECONDS)


settings = Settings()
