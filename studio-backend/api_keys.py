"""
SQL Studio - API Key Management
===============================

Named API keys live in their own small database (API_KEYS_DATABASE_URL),
separate from the database being administered so that /api/query can never
read or rewrite them. The app refuses to start if both URLs are the same.

Validity lookups are memoized in a TTLCache (positive AND negative results)
so an authenticated request does not hit the key store every time.
Deleting a key evicts its cache entry immediately.

Author: SQL Studio Team
"""

import hashlib
import logging
import secrets
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from ttl_cache import TTLCache

logger = logging.getLogger(__name__)

API_KEYS_TABLE = "studio_api_keys"
MAX_KEY_NAME_LENGTH = 128


class ApiKeyError(Exception):
    """Base class for key management failures"""


class InvalidApiKeyName(ApiKeyError):
    pass


class ApiKeyExists(ApiKeyError):
    pass


class ApiKeyNotFound(ApiKeyError):
    pass


class ApiKeyStoreUnavailable(ApiKeyError):
    pass


def generate_api_key() -> str:
    """64 hex chars from 32 random bytes"""
    return secrets.token_hex(32)


def _cache_key(key: str) -> str:
    return hashlib.sha256(key.encode()).hexdigest()


def _mask(key: str) -> str:
    return key[:4] + "..." + key[-4:] if len(key) > 12 else "***"


class ApiKeyStore:
    """Stores named API keys and answers validity checks"""

    def __init__(self, database_url: str, cache_ttl: float = 300, engine: Optional[Engine] = None):
        self.engine = engine or create_engine(database_url)
        self.cache = TTLCache("api_keys", max_size=10000, default_ttl=cache_ttl)
        self._ensure_table()
        logger.info("API key store ready")

    def _ensure_table(self):
        with self.engine.begin() as conn:
            conn.execute(text(
                f"CREATE TABLE IF NOT EXISTS {API_KEYS_TABLE} ("
                " key VARCHAR(128) PRIMARY KEY,"
                " name VARCHAR(128) NOT NULL UNIQUE,"
                " description TEXT,"
                " created_at VARCHAR(40) NOT NULL"
                ")"
            ))

    def create(self, name: Any, description: Optional[str] = None) -> Dict[str, Any]:
        """
        Create a new named key.

        Returns:
            Dict with key, name, description, createdAt. The key value is
            only ever returned here.
        """
        if not name or not isinstance(name, str) or not name.strip():
            raise InvalidApiKeyName("Invalid key name: must be a non-empty string")
        name = name.strip()
        if len(name) > MAX_KEY_NAME_LENGTH:
            raise InvalidApiKeyName(
                f"Invalid key name: exceeds maximum length of {MAX_KEY_NAME_LENGTH} characters"
            )

        key = generate_api_key()
        created_at = datetime.now(timezone.utc).isoformat()

        with self.engine.begin() as conn:
            existing = conn.execute(
                text(f"SELECT 1 FROM {API_KEYS_TABLE} WHERE name = :name"),
                {"name": name},
            ).first()
            if existing:
                raise ApiKeyExists("An API key with this name already exists")

            conn.execute(
                text(
                    f"INSERT INTO {API_KEYS_TABLE} (key, name, description, created_at) "
                    "VALUES (:key, :name, :description, :created_at)"
                ),
                {"key": key, "name": name, "description": description, "created_at": created_at},
            )

        # A negative result for this value may be cached already
        self.cache.invalidate(_cache_key(key))
        logger.info(f"Created API key '{name}' ({_mask(key)})")

        return {"key": key, "name": name, "description": description, "createdAt": created_at}

    def list(self) -> List[Dict[str, Any]]:
        """All keys without their values"""
        with self.engine.connect() as conn:
            rows = conn.execute(text(
                f"SELECT name, description, created_at FROM {API_KEYS_TABLE} ORDER BY created_at, name"
            )).fetchall()

        return [
            {"name": row.name, "description": row.description, "createdAt": row.created_at}
            for row in rows
        ]

    def delete(self, name: str) -> bool:
        with self.engine.begin() as conn:
            row = conn.execute(
                text(f"SELECT key FROM {API_KEYS_TABLE} WHERE name = :name"),
                {"name": name},
            ).first()
            if row is None:
                raise ApiKeyNotFound("API key not found")

            conn.execute(text(f"DELETE FROM {API_KEYS_TABLE} WHERE name = :name"), {"name": name})

        self.cache.invalidate(_cache_key(row.key))
        logger.info(f"Deleted API key '{name}'")
        return True

    def has_any(self) -> bool:
        with self.engine.connect() as conn:
            return conn.execute(text(f"SELECT 1 FROM {API_KEYS_TABLE} LIMIT 1")).first() is not None

    def validate(self, key: str) -> bool:
        """Check a key, consulting the TTL cache first"""
        if not key:
            return False

        cache_key = _cache_key(key)
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        with self.engine.connect() as conn:
            row = conn.execute(
                text(f"SELECT 1 FROM {API_KEYS_TABLE} WHERE key = :key"),
                {"key": key},
            ).first()

        is_valid = row is not None
        self.cache.set(cache_key, is_valid)
        if not is_valid:
            logger.warning(f"Rejected unknown API key ({_mask(key)})")
        return is_valid


class ApiKeyAuthenticator:
    """
    Resolves an Authorization header to allow/deny.

    With a key store: the bearer token must be a stored key.
    Without one: the token must equal the single configured key.
    """

    def __init__(self, store: Optional[ApiKeyStore], fallback_key: str):
        self.store = store
        self.fallback_key = fallback_key

    @staticmethod
    def extract_token(authorization: Optional[str]) -> Optional[str]:
        if not authorization:
            return None
        token = authorization.strip()
        scheme, _, rest = token.partition(" ")
        if scheme.lower() == "bearer":
            token = rest.strip()
        return token or None

    def authenticate(self, authorization: Optional[str]) -> bool:
        token = self.extract_token(authorization)
        if token is None:
            return False

        if self.store is not None:
            return self.store.validate(token)

        return secrets.compare_digest(token.encode(), self.fallback_key.encode())
