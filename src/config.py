import os
from dotenv import load_dotenv

load_dotenv()

POSTGRES_USER = os.getenv("POSTGRES_USER")
POSTGRES_PASSWORD = os.getenv("POSTGRES_PASSWORD")
POSTGRES_DB = os.getenv("POSTGRES_DB_URL")

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+asyncpg://{POSTGRES_USER}:{POSTGRES_PASSWORD}@{POSTGRES_DB}",
)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Seconds allowed for a single roster/store call
STORE_TIMEOUT = float(os.getenv("STORE_TIMEOUT", "10"))
# Extra attempts for idempotent reads, writes are never retried
READ_RETRIES = int(os.getenv("READ_RETRIES", "2"))
RETRY_BACKOFF = float(os.getenv("RETRY_BACKOFF", "0.1"))
