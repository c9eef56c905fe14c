# crawler/config.py
import os
from dotenv import load_dotenv

load_dotenv()

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB = os.getenv("MONGO_DB", "price_aggregator")

USER_AGENT = os.getenv(
    "USER_AGENT", "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
)
FETCH_TIMEOUT = float(os.getenv("FETCH_TIMEOUT_SECONDS", "30"))
FETCH_RETRIES = int(os.getenv("FETCH_RETRIES", "3"))
FETCH_RETRY_DELAY = float(os.getenv("FETCH_RETRY_DELAY_SECONDS", "2"))
POLITE_DELAY = float(os.getenv("POLITE_DELAY_SECONDS", "0.5"))

RENDERED_FETCH_ENABLED = os.getenv("RENDERED_FETCH_ENABLED", "true").lower() == "true"
# seconds to let client-side rendering settle before/after scrolling
RENDER_SETTLE = float(os.getenv("RENDER_SETTLE_SECONDS", "2"))
RENDER_WAIT_TIMEOUT = float(os.getenv("RENDER_WAIT_TIMEOUT_SECONDS", "15"))

JOB_HISTORY_DAYS = int(os.getenv("JOB_HISTORY_DAYS", "7"))
