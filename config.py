import os
from dataclasses import dataclass
from typing import List


def _split(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    database_url: str
    database_name: str
    app_id: str
    jwt_secret: str
    jwt_algorithm: str
    access_token_expire_minutes: int
    store_timeout_seconds: float
    cors_origins: List[str]
    log_level: str
    port: int

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", "mongodb://localhost:27017").strip(),
            database_name=os.getenv("DATABASE_NAME", "devstudy").strip(),
            app_id=os.getenv("APP_ID", "devstudy-local").strip(),
            jwt_secret=os.getenv("JWT_SECRET", "devstudy-dev-secret"),
            jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256").strip(),
            access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24 * 7))),  # 7 days
            store_timeout_seconds=float(os.getenv("STORE_TIMEOUT_SECONDS", "10")),
            cors_origins=_split(os.getenv("CORS_ORIGINS", "*")),
            log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
            port=int(os.getenv("PORT", "8000")),
        )


SETTINGS = Settings.from_env()
