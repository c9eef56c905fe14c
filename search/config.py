# search/config.py
import os
from dotenv import load_dotenv

load_dotenv()

ELASTICSEARCH_URL = os.getenv("ELASTICSEARCH_URL", "http://localhost:9200")
SEARCH_INDEX_ENABLED = os.getenv("SEARCH_INDEX_ENABLED", "true").lower() == "true"
SEARCH_INDEX_NAME = os.getenv("SEARCH_INDEX_NAME", "offers")
INDEX_BATCH_SIZE = int(os.getenv("INDEX_BATCH_SIZE", "100"))

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
SEARCH_CACHE_TTL = int(os.getenv("SEARCH_CACHE_TTL_SECONDS", "1800"))
CHEAPEST_CACHE_TTL = int(os.getenv("CHEAPEST_CACHE_TTL_SECONDS", "43200"))

BREAKER_WINDOW_SIZE = int(os.getenv("BREAKER_WINDOW_SIZE", "10"))
BREAKER_MINIMUM_CALLS = int(os.getenv("BREAKER_MINIMUM_CALLS", "5"))
BREAKER_FAILURE_RATE = float(os.getenv("BREAKER_FAILURE_RATE", "0.5"))
BREAKER_OPEN_SECONDS = float(os.getenv("BREAKER_OPEN_SECONDS", "30"))
