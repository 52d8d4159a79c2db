"""SQL Studio settings, read from the environment (and .env if present)"""
import os
from dotenv import load_dotenv

load_dotenv()

# Database being administered
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./studio.db")

# Separate store for API keys; unset means single shared key from API_KEY
API_KEYS_DATABASE_URL = os.getenv("API_KEYS_DATABASE_URL") or None

# Fallback key - CHANGE THIS in production
DEFAULT_API_KEY = "dev-api-key-change-in-production"
API_KEY = os.getenv("API_KEY") or DEFAULT_API_KEY

# Cache TTLs (seconds)
API_KEY_CACHE_TTL = float(os.getenv("API_KEY_CACHE_TTL", "300"))
SCHEMA_CACHE_TTL = float(os.getenv("SCHEMA_CACHE_TTL", "60"))

# Server
CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
