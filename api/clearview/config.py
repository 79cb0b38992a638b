import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clearview.db")
SECRET_KEY = os.getenv("SECRET_KEY", "devsecret")
ADMIN_ACCESS_TOKEN = os.getenv("ADMIN_ACCESS_TOKEN")
SESSION_MAX_AGE = int(os.getenv("SESSION_MAX_AGE", str(60 * 60 * 24 * 7)))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

MINIO_ENDPOINT = os.getenv("MINIO_ENDPOINT", "minio:9000")
MINIO_ACCESS_KEY = os.getenv("MINIO_ACCESS_KEY", "minioadmin")
MINIO_SECRET_KEY = os.getenv("MINIO_SECRET_KEY", "minioadmin")
MINIO_SECURE = os.getenv("MINIO_SECURE", "false").lower() in ("1", "true", "yes")
SIGNATURE_BUCKET = os.getenv("CHANGE_ORDER_SIGNATURE_BUCKET", "change-order-signatures")
STORAGE_PUBLIC_BASE_URL = os.getenv("STORAGE_PUBLIC_BASE_URL")

APP_URL = os.getenv("APP_URL", "http://localhost:3000")
APP_NAME = os.getenv("APP_NAME", "Clearview")
CHANGE_ORDER_CLIENT_URL_BASE = os.getenv("CHANGE_ORDER_CLIENT_URL_BASE")
CHANGE_ORDER_RESPOND_BASE_URL = os.getenv("CHANGE_ORDER_RESPOND_BASE_URL")
CHANGE_ORDER_LINK_TTL_DAYS = int(os.getenv("CHANGE_ORDER_LINK_TTL_DAYS", "7"))
