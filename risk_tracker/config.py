"""Runtime configuration read from the environment (and a local .env file)."""

import os

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, float(default)))


# Minimum time a live alert stays on screen before the next one may replace it
ALERT_DISPLAY_SECONDS = _env_float('ALERT_DISPLAY_SECONDS', 10.0)

# Number of parsed records returned for interactive preview
PREVIEW_LIMIT = _env_int('PREVIEW_LIMIT', 500)

MAX_UPLOAD_SIZE_MB = _env_int('MAX_UPLOAD_SIZE_MB', 10)
MAX_UPLOAD_SIZE = MAX_UPLOAD_SIZE_MB * 1024 * 1024

# Uploaded-but-uncommitted batches kept in memory; oldest evicted first
MAX_PENDING_BATCHES = max(1, _env_int('MAX_PENDING_BATCHES', 20))

ALLOW_ORIGINS = os.getenv('ALLOW_ORIGINS', '*').split(',')

DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'

# Start the live watch session together with the HTTP app
LIVE_ALERTS_ENABLED = os.getenv('LIVE_ALERTS_ENABLED', 'True').lower() == 'true'

MENTOR_EMAIL = os.getenv('MENTOR_EMAIL', 'mentor@example.com')
