"""Configuration for the FireGuard alert service"""

import os
from dotenv import load_dotenv

load_dotenv()

# Event Hub-compatible endpoint of the IoT Hub; empty means HTTP ingestion only
EH_CONN = os.getenv("EH_COMPAT_CONN_STR") or ""
EH_GROUP = os.getenv("EH_CONSUMER_GROUP", "$Default")  # prefer a dedicated group

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB = os.getenv("MONGO_DB", "fireguard")
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

# Alerting
ALERT_IO_TIMEOUT_SECONDS = float(os.getenv("ALERT_IO_TIMEOUT_SECONDS", "5"))
FALLBACK_ALERT_EMAIL = os.getenv("FALLBACK_ALERT_EMAIL", "admin@fireguard.com")
DEFAULT_LOCATION = os.getenv("DEFAULT_LOCATION", "Building A - Floor 1")

# Device liveness
OFFLINE_AFTER_SECONDS = int(os.getenv("OFFLINE_AFTER_SECONDS", "60"))
OFFLINE_SWEEP_INTERVAL_SECONDS = float(os.getenv("OFFLINE_SWEEP_INTERVAL_SECONDS", "10"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
