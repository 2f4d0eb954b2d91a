import os


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# ✅ Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./entitlements.db")

# ✅ Security
SECRET_KEY = os.getenv("SECRET_KEY", "change-me")
ALGORITHM = os.getenv("ALGORITHM", "HS256")

# ✅ Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR", "logs")

# ✅ CORS
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if origin.strip()
]

# ✅ Metering
BROWSE_RESET_DAYS = int(os.getenv("BROWSE_RESET_DAYS", "30"))
EXPIRING_SOON_DAYS = int(os.getenv("EXPIRING_SOON_DAYS", "7"))
BROWSE_WARNING_RATIO = float(os.getenv("BROWSE_WARNING_RATIO", "0.8"))
MAX_CONCURRENCY_RETRIES = int(os.getenv("MAX_CONCURRENCY_RETRIES", "5"))
RELEASE_QUOTA_ON_DELETE = _env_bool("RELEASE_QUOTA_ON_DELETE", False)

# ✅ Manual activation
REQUEST_DEFAULT_PERIOD_DAYS = int(os.getenv("REQUEST_DEFAULT_PERIOD_DAYS", "30"))
