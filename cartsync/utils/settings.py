# cartsync/utils/settings.py
import os
from dotenv import load_dotenv

load_dotenv()

API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000")
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", 10))

# memory | file | redis
STORE_BACKEND = os.getenv("STORE_BACKEND", "memory")
STORE_FILE_PATH = os.getenv("STORE_FILE_PATH", ".cartsync/store.json")
REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
REDIS_NAMESPACE = os.getenv("REDIS_NAMESPACE", "cartsync")
REDIS_TTL_SECONDS = int(os.getenv("REDIS_TTL_SECONDS", 0))

GUEST_CART_KEY = os.getenv("GUEST_CART_KEY", "guest_cart")
PENDING_EDITS_KEY = os.getenv("PENDING_EDITS_KEY", "cart_updates_cache")
MERGE_FLAG_KEY = os.getenv("MERGE_FLAG_KEY", "guest_cart_merged")

POSTAL_CODE_LENGTH = int(os.getenv("POSTAL_CODE_LENGTH", 6))
MAX_CONCURRENT_REQUESTS = int(os.getenv("MAX_CONCURRENT_REQUESTS", 8))

PAYMENT_WIDGET_FACTORY = os.getenv("PAYMENT_WIDGET_FACTORY", "")
PAYMENT_WIDGET_TIMEOUT_SECONDS = float(os.getenv("PAYMENT_WIDGET_TIMEOUT_SECONDS", 15 * 60))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
