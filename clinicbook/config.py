import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clinicbook.db")

# All appointment dates/times are wall-clock times in the clinic's timezone
CLINIC_TIMEZONE = os.getenv("CLINIC_TIMEZONE", "Asia/Kolkata")

# Redis (slot listing cache + ARQ worker)
REDIS_URL = os.getenv("REDIS_URL")
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD")
REDIS_SSL = os.getenv("REDIS_SSL", "false").lower() == "true"

# Schedule configuration cache used by the public slot listing only.
# Booking, cancellation and rescheduling always read the database.
SLOT_CACHE_ENABLED = os.getenv("SLOT_CACHE_ENABLED", "true").lower() == "true"
SLOT_CACHE_TTL = int(os.getenv("SLOT_CACHE_TTL", "300"))

# Booking surface defaults
DEFAULT_AVAILABLE_DATE_RANGE = int(os.getenv("DEFAULT_AVAILABLE_DATE_RANGE", "30"))
MAX_AVAILABLE_DATE_RANGE = int(os.getenv("MAX_AVAILABLE_DATE_RANGE", "90"))

# How often the worker sweeps unpaid PENDING reservations (minutes)
PENDING_EXPIRY_INTERVAL_MINUTES = int(os.getenv("PENDING_EXPIRY_INTERVAL_MINUTES", "5"))

# CORS
ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
