import os
from dotenv import load_dotenv

load_dotenv()

DEFAULT_CORS_ORIGINS = (
    "http://localhost:3000,http://localhost:5173,http://localhost:8081,"
    "http://localhost:8082,http://localhost:8083,http://localhost:19006"
)

def _as_bool(v: str | None, default: bool = False) -> bool:
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}

def _as_list(v: str | None) -> list[str]:
    if not v:
        return []
    return [item.strip() for item in v.split(",") if item.strip()]

class Settings:
    def __init__(self, **overrides):
        # App
        self.APP_NAME: str = os.getenv("APP_NAME", "library-management-api")
        self.ENV: str = os.getenv("ENV", "dev")
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
        self.PORT: int = int(os.getenv("PORT", "8000"))

        # DB
        self.DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./library.db")

        # Clients (mobile + web)
        self.CORS_ORIGINS: list[str] = _as_list(os.getenv("CORS_ORIGINS", DEFAULT_CORS_ORIGINS))

        # Borrowing policy
        self.LOAN_DAYS: int = int(os.getenv("LOAN_DAYS", "14"))
        self.MAX_RENEWALS: int = int(os.getenv("MAX_RENEWALS", "2"))
        self.BORROW_LIMIT: int = int(os.getenv("BORROW_LIMIT", "5"))

        # Periodic overdue sweep, off by default: reads always sweep lazily
        self.ENABLE_OVERDUE_SWEEPER: bool = _as_bool(os.getenv("ENABLE_OVERDUE_SWEEPER"), False)
        self.OVERDUE_SWEEP_INTERVAL_SECONDS: int = int(os.getenv("OVERDUE_SWEEP_INTERVAL_SECONDS", "300"))

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise AttributeError(f"Unknown setting: {key}")
            setattr(self, key, value)

settings = Settings()
