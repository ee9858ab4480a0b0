import os

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

# Rooms left empty this long are removed by the idle reaper
ROOM_IDLE_TIMEOUT_SECONDS = float(os.getenv("ROOM_IDLE_TIMEOUT_SECONDS", 5 * 60))
ROOM_SWEEP_INTERVAL_SECONDS = float(os.getenv("ROOM_SWEEP_INTERVAL_SECONDS", 60))

# Load-error handling: abort after this many consecutive failures, otherwise
# wait this long before skipping to the next entry
MAX_CONSECUTIVE_LOAD_FAILURES = int(os.getenv("MAX_CONSECUTIVE_LOAD_FAILURES", 5))
LOAD_ERROR_SKIP_DELAY_SECONDS = float(os.getenv("LOAD_ERROR_SKIP_DELAY_SECONDS", 1.0))

SEARCH_RESULT_LIMIT = int(os.getenv("SEARCH_RESULT_LIMIT", 10))

CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]
