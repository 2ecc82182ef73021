"""
Remote key-value store handles.

A namespace is the raw store binding the adapter talks to. All
implementations share the Workers KV call shape:

    get(key, type)                       -> value or None
    put(key, value, expiration_ttl, metadata)
    delete(key)
    list(prefix, limit, cursor)          -> {"keys": [...], "list_complete", "cursor"}

Values are written as strings; get() decodes them as JSON by default.
Implementations raise their native errors; wrapping with operation
context is the adapter's job.
"""
import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Generator, Optional
from urllib.parse import quote

import requests
from sqlalchemy import create_engine, delete, event, or_, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool

from cloudnav import constants
from cloudnav.models import Base, KVEntry

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 1000


def _decode(raw: Optional[str], type: str) -> Any:
    """Decode a stored string according to the requested type."""
    if raw is None:
        return None
    if type == "json":
        return json.loads(raw)
    if type == "text":
        return raw
    raise ValueError(f"Unsupported value type: {type}")


class KVNamespace(ABC):
    """Interface for a remote key-value store binding."""

    @abstractmethod
    def get(self, key: str, type: str = "json") -> Any:
        pass

    @abstractmethod
    def put(self, key: str, value: str, expiration_ttl: Optional[int] = None,
            metadata: Optional[Dict[str, Any]] = None) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def list(self, prefix: Optional[str] = None, limit: int = DEFAULT_LIST_LIMIT,
             cursor: Optional[str] = None) -> Dict[str, Any]:
        pass

    def close(self) -> None:
        """Release connections held by the binding."""


class MemoryNamespace(KVNamespace):
    """Process-local namespace for development and tests."""

    def __init__(self):
        self._data: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[Dict[str, Any]]:
        item = self._data.get(key)
        if item is None:
            return None
        expiration = item.get("expiration")
        if expiration is not None and expiration <= time.time():
            del self._data[key]
            return None
        return item

    def get(self, key: str, type: str = "json") -> Any:
        with self._lock:
            item = self._live(key)
            raw = item["value"] if item else None
        return _decode(raw, type)

    def put(self, key: str, value: str, expiration_ttl: Optional[int] = None,
            metadata: Optional[Dict[str, Any]] = None) -> None:
        if not isinstance(value, str):
            raise TypeError(f"KV values must be strings, got {value.__class__.__name__}")
        expiration = time.time() + expiration_ttl if expiration_ttl else None
        with self._lock:
            self._data[key] = {"value": value, "metadata": metadata, "expiration": expiration}

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def list(self, prefix: Optional[str] = None, limit: int = DEFAULT_LIST_LIMIT,
             cursor: Optional[str] = None) -> Dict[str, Any]:
        with self._lock:
            names = sorted(k for k in list(self._data) if self._live(k) is not None)
            if prefix:
                names = [k for k in names if k.startswith(prefix)]
            start = int(cursor) if cursor else 0
            page = names[start:start + limit]
            keys = [{
                "name": name,
                "expiration": self._data[name]["expiration"],
                "metadata": self._data[name]["metadata"],
            } for name in page]
        end = start + len(page)
        complete = end >= len(names)
        return {"keys": keys, "list_complete": complete, "cursor": None if complete else str(end)}

    def __len__(self) -> int:
        return len(self._data)


class SQLNamespace(KVNamespace):
    """
    Namespace stored in a SQL database through SQLAlchemy.

    Works with a SQLite file by default and with any SQLAlchemy URL
    (PostgreSQL, MySQL) for shared deployments.
    """

    def __init__(self, url: str, echo: bool = False):
        """
        Initialize the database connection.

        Args:
            url: SQLAlchemy database URL, e.g. sqlite:///cloudnav-kv.db
            echo: Log emitted SQL
        """
        self.url = url

        if url.startswith("sqlite:"):
            self.engine = create_engine(
                url,
                connect_args={"check_same_thread": False},
                poolclass=NullPool,  # NullPool for thread-safe SQLite access
                echo=echo
            )
            event.listen(self.engine, "connect", self._configure_sqlite)
        else:
            self.engine = create_engine(url, pool_pre_ping=True, pool_recycle=3600, echo=echo)

        self.Session = sessionmaker(bind=self.engine, autoflush=False)
        Base.metadata.create_all(self.engine)

    @staticmethod
    def _configure_sqlite(dbapi_conn, connection_record):
        """Configure SQLite for concurrent readers."""
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode = WAL")
        cursor.execute("PRAGMA synchronous = NORMAL")
        cursor.close()

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Context manager for database sessions.

        Yields:
            SQLAlchemy session with automatic commit/rollback
        """
        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get(self, key: str, type: str = "json") -> Any:
        with self.session() as session:
            entry = session.get(KVEntry, key)
            if entry is None:
                return None
            if entry.is_expired():
                session.delete(entry)
                return None
            raw = entry.value
        return _decode(raw, type)

    def put(self, key: str, value: str, expiration_ttl: Optional[int] = None,
            metadata: Optional[Dict[str, Any]] = None) -> None:
        if not isinstance(value, str):
            raise TypeError(f"KV values must be strings, got {value.__class__.__name__}")
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(seconds=expiration_ttl) if expiration_ttl else None
        with self.session() as session:
            session.merge(KVEntry(
                key=key,
                value=value,
                meta=metadata,
                expires_at=expires_at,
                updated_at=now,
            ))

    def delete(self, key: str) -> None:
        with self.session() as session:
            session.execute(delete(KVEntry).where(KVEntry.key == key))

    def list(self, prefix: Optional[str] = None, limit: int = DEFAULT_LIST_LIMIT,
             cursor: Optional[str] = None) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        offset = int(cursor) if cursor else 0
        query = select(KVEntry).where(
            or_(KVEntry.expires_at.is_(None), KVEntry.expires_at > now)
        )
        if prefix:
            query = query.where(KVEntry.key.startswith(prefix, autoescape=True))
        query = query.order_by(KVEntry.key).offset(offset).limit(limit + 1)

        with self.session() as session:
            rows = session.execute(query).scalars().all()
            keys = [{
                "name": row.key,
                "expiration": int(row.expires_at.timestamp()) if row.expires_at else None,
                "metadata": row.meta,
            } for row in rows[:limit]]

        complete = len(rows) <= limit
        return {
            "keys": keys,
            "list_complete": complete,
            "cursor": None if complete else str(offset + limit),
        }

    def purge_expired(self) -> int:
        """Delete expired rows. Returns the number removed."""
        now = datetime.now(timezone.utc)
        with self.session() as session:
            result = session.execute(delete(KVEntry).where(KVEntry.expires_at <= now))
            return result.rowcount or 0

    def close(self) -> None:
        self.engine.dispose()


class CloudflareKVNamespace(KVNamespace):
    """Cloudflare Workers KV namespace accessed through the REST API."""

    def __init__(self, account_id: str, namespace_id: str, api_token: str,
                 api_base: str = constants.CLOUDFLARE_API_BASE,
                 timeout: int = constants.DEFAULT_REQUEST_TIMEOUT,
                 session: Optional[requests.Session] = None):
        """
        Initialize the REST client.

        Args:
            account_id: Cloudflare account id
            namespace_id: KV namespace id
            api_token: API token with Workers KV read/write permission
            api_base: API root URL
            timeout: Request timeout in seconds
            session: Pre-configured requests session (tests)
        """
        self.base_url = f"{api_base.rstrip('/')}/accounts/{account_id}/storage/kv/namespaces/{namespace_id}"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {api_token}"})

    def _value_url(self, key: str) -> str:
        return f"{self.base_url}/values/{quote(key, safe='')}"

    def get(self, key: str, type: str = "json") -> Any:
        response = self.session.get(self._value_url(key), timeout=self.timeout)
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return _decode(response.text, type)

    def put(self, key: str, value: str, expiration_ttl: Optional[int] = None,
            metadata: Optional[Dict[str, Any]] = None) -> None:
        params = {"expiration_ttl": expiration_ttl} if expiration_ttl else None
        if metadata is not None:
            response = self.session.put(
                self._value_url(key),
                params=params,
                files={
                    "value": (None, value),
                    "metadata": (None, json.dumps(metadata)),
                },
                timeout=self.timeout,
            )
        else:
            response = self.session.put(
                self._value_url(key),
                params=params,
                data=value.encode("utf-8"),
                headers={"Content-Type": "text/plain; charset=utf-8"},
                timeout=self.timeout,
            )
        response.raise_for_status()

    def delete(self, key: str) -> None:
        response = self.session.delete(self._value_url(key), timeout=self.timeout)
        if response.status_code != 404:
            response.raise_for_status()

    def list(self, prefix: Optional[str] = None, limit: int = DEFAULT_LIST_LIMIT,
             cursor: Optional[str] = None) -> Dict[str, Any]:
        params: Dict[str, Any] = {"limit": limit}
        if prefix:
            params["prefix"] = prefix
        if cursor:
            params["cursor"] = cursor

        response = self.session.get(f"{self.base_url}/keys", params=params, timeout=self.timeout)
        response.raise_for_status()
        body = response.json()

        next_cursor = (body.get("result_info") or {}).get("cursor") or None
        return {
            "keys": body.get("result", []),
            "list_complete": next_cursor is None,
            "cursor": next_cursor,
        }

    def close(self) -> None:
        self.session.close()


def open_namespace(config) -> Optional[KVNamespace]:
    """
    Open the namespace selected by config.kv_backend.

    Args:
        config: NavConfig instance

    Returns:
        A namespace, or None when no remote store is configured
    """
    backend = (config.kv_backend or "none").lower()

    if backend == "none":
        return None
    if backend == "memory":
        return MemoryNamespace()
    if backend in ("sql", "sqlite"):
        return SQLNamespace(config.get_kv_database_url(), echo=config.database_echo)
    if backend == "cloudflare":
        missing = [name for name in ("cloudflare_account_id", "cloudflare_namespace_id",
                                     "cloudflare_api_token") if not getattr(config, name)]
        if missing:
            raise ValueError(f"Cloudflare KV backend needs: {', '.join(missing)}")
        return CloudflareKVNamespace(
            account_id=config.cloudflare_account_id,
            namespace_id=config.cloudflare_namespace_id,
            api_token=config.cloudflare_api_token,
            api_base=config.cloudflare_api_base,
            timeout=config.request_timeout,
        )

    raise ValueError(f"Unknown kv_backend: {config.kv_backend}")
