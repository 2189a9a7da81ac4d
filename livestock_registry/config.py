import os
from pathlib import Path

# Configuration via environment variables with sensible defaults
PORT = int(os.getenv("PORT", "8000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# SQLite configuration (single-node deployments and tests)
DB_PATH = os.getenv("DB_PATH", str(Path(__file__).parent / "data" / "registry.db"))

# PostgreSQL configuration
DATABASE_URL = os.getenv("DATABASE_URL", "")
DB_POOL_MIN_SIZE = int(os.getenv("DB_POOL_MIN_SIZE", "5"))
DB_POOL_MAX_SIZE = int(os.getenv("DB_POOL_MAX_SIZE", "20"))
DB_TIMEOUT = int(os.getenv("DB_TIMEOUT", "60"))  # Command timeout in seconds
DB_LOCK_TIMEOUT_MS = int(os.getenv("DB_LOCK_TIMEOUT_MS", "5000"))  # Max wait on a row/db lock

# Database type selection
USE_POSTGRES = bool(os.getenv("USE_POSTGRES", "false").lower() in ("true", "1", "yes"))

# Admission control
ADMISSION_MAX_ATTEMPTS = int(os.getenv("ADMISSION_MAX_ATTEMPTS", "3"))
RETRY_BACKOFF_SECONDS = float(os.getenv("RETRY_BACKOFF_SECONDS", "0.05"))

# Query facade
SEARCH_DEFAULT_LIMIT = int(os.getenv("SEARCH_DEFAULT_LIMIT", "20"))
SEARCH_MAX_LIMIT = int(os.getenv("SEARCH_MAX_LIMIT", "100"))
GENEALOGY_BATCH_SIZE = int(os.getenv("GENEALOGY_BATCH_SIZE", "50"))
