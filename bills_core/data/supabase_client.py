# =============================================================================
# bills_core/data/supabase_client.py
# Supabase client configuration and the remote backend used by the gateway
# =============================================================================

from __future__ import annotations
import socket
from abc import ABC, abstractmethod
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Dict, List, Optional

import httpx
import requests
from postgrest.exceptions import APIError
from supabase import Client, ClientOptions, create_client

from bills_core.config import Settings, get_settings
from bills_core.errors import (
    AuthenticationError,
    BillsError,
    ConfigurationError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitedError,
    RemoteServiceError,
    TransientNetworkError,
    ValidationError,
)
from bills_core.logging import get_logger

logger = get_logger(__name__)

# PostgREST error codes
PGRST_NO_ROWS = "PGRST116"
PG_INSUFFICIENT_PRIVILEGE = "42501"


def get_supabase_client(settings: Optional[Settings] = None) -> Client:
    """
    Initialize and return a Supabase client from settings.

    Expects SUPABASE_URL / SUPABASE_KEY in the environment or a
    ``[supabase]`` section in the TOML config file.

    Raises:
        ConfigurationError: If the URL or key is missing
    """
    settings = settings or get_settings()
    if not settings.supabase.configured:
        raise ConfigurationError(
            "Supabase credentials not found. Set SUPABASE_URL and SUPABASE_KEY.",
            config_key="supabase",
        )

    options = ClientOptions(
        postgrest_client_timeout=settings.retry.request_timeout_seconds,
    )
    return create_client(settings.supabase.url, settings.supabase.key, options=options)


def _status_of(exc: Exception) -> Optional[int]:
    """Best-effort HTTP status extraction from backend exceptions."""
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int):
        return value
    code = getattr(exc, "code", None)
    if isinstance(code, str) and code.isdigit() and len(code) == 3:
        return int(code)
    return None


def classify_exception(exc: Exception, operation: Optional[str] = None) -> BillsError:
    """
    Translate a backend/network exception into the error taxonomy.

    Transient: timeouts, DNS and connection errors, 5xx, 429.
    Everything else is non-transient and must not be retried.
    """
    if isinstance(exc, BillsError):
        return exc

    if isinstance(exc, (TimeoutError, FutureTimeoutError, httpx.TimeoutException, requests.Timeout)):
        return TransientNetworkError(f"Request timed out: {exc}", operation=operation)

    if isinstance(exc, (socket.gaierror, ConnectionError, httpx.TransportError, requests.ConnectionError)):
        return TransientNetworkError(f"Network unreachable: {exc}", operation=operation)

    if isinstance(exc, APIError):
        code = str(exc.code or "")
        message = exc.message or str(exc)
        if code == PGRST_NO_ROWS:
            return NotFoundError(message)
        if code == PG_INSUFFICIENT_PRIVILEGE:
            return PermissionDeniedError(message)
        if code[:2] in ("22", "23"):
            return ValidationError(message, details={"backend_code": code})

    status = _status_of(exc)
    if status is not None:
        if status == 429:
            return RateLimitedError(operation=operation)
        if status >= 500:
            return TransientNetworkError(
                f"Server error: {exc}", status_code=status, operation=operation
            )
        if status == 401:
            return AuthenticationError(str(exc) or "Session expired")
        if status == 403:
            return PermissionDeniedError(str(exc))
        if status == 404:
            return NotFoundError(str(exc))
        if status in (400, 409, 422):
            return ValidationError(str(exc), details={"status_code": status})

    return RemoteServiceError(str(exc) or exc.__class__.__name__, status_code=status)


class RemoteBackend(ABC):
    """
    Capability set the sync core needs from the hosted backend:
    record CRUD scoped by owner, a reachability probe, and session calls.
    """

    @abstractmethod
    def fetch_accounts(self, owner_id: str) -> List[Dict[str, Any]]:
        """Return all rows owned by ``owner_id`` ordered by due date"""

    @abstractmethod
    def insert_account(self, row: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a row and return the stored row"""

    @abstractmethod
    def update_account(self, account_id: str, owner_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Apply a partial update and return the stored row"""

    @abstractmethod
    def delete_account(self, account_id: str, owner_id: str) -> None:
        """Delete the row"""

    @abstractmethod
    def get_owner(self, account_id: str) -> Optional[str]:
        """Return the owner id of an account, or None if it does not exist"""

    @abstractmethod
    def probe(self, timeout: float) -> bool:
        """Lightweight reachability check"""

    def sign_in(self, email: str, password: str) -> Dict[str, Any]:
        raise NotImplementedError

    def sign_out(self) -> None:
        raise NotImplementedError

    def current_session(self) -> Optional[Dict[str, Any]]:
        raise NotImplementedError


class SupabaseBackend(RemoteBackend):
    """
    Supabase implementation of the remote backend.
    """

    BATCH_SIZE = 1000

    def __init__(self, client: Optional[Client] = None, settings: Optional[Settings] = None):
        """
        Args:
            client: Pre-built Supabase client (built from settings if None)
            settings: Settings providing URL, key and table name
        """
        self.settings = settings or get_settings()
        self.client = client or get_supabase_client(self.settings)
        self.table_name = self.settings.supabase.table

    def _table(self):
        return self.client.table(self.table_name)

    def fetch_accounts(self, owner_id: str) -> List[Dict[str, Any]]:
        """
        Fetch ALL rows of an owner (handles the Supabase 1000 row limit).
        """
        all_data: List[Dict[str, Any]] = []
        offset = 0

        while True:
            response = (
                self._table()
                .select("*")
                .eq("owner_id", owner_id)
                .order("due_date")
                .range(offset, offset + self.BATCH_SIZE - 1)
                .execute()
            )

            if not response.data:
                break
            all_data.extend(response.data)
            # Fewer than a full batch means we reached the end
            if len(response.data) < self.BATCH_SIZE:
                break
            offset += self.BATCH_SIZE

        logger.debug(f"Fetched {len(all_data)} accounts for owner {owner_id}")
        return all_data

    def insert_account(self, row: Dict[str, Any]) -> Dict[str, Any]:
        response = self._table().insert(row).execute()
        if not response.data:
            raise RemoteServiceError("Insert returned no row", details={"account_id": row.get("id")})
        return response.data[0]

    def update_account(self, account_id: str, owner_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        response = (
            self._table()
            .update(changes)
            .eq("id", account_id)
            .eq("owner_id", owner_id)
            .execute()
        )
        if not response.data:
            raise NotFoundError(account_id=account_id)
        return response.data[0]

    def delete_account(self, account_id: str, owner_id: str) -> None:
        (
            self._table()
            .delete()
            .eq("id", account_id)
            .eq("owner_id", owner_id)
            .execute()
        )

    def get_owner(self, account_id: str) -> Optional[str]:
        response = self._table().select("owner_id").eq("id", account_id).limit(1).execute()
        if not response.data:
            return None
        return response.data[0]["owner_id"]

    def probe(self, timeout: float) -> bool:
        """
        Check that the REST endpoint answers. Any response below 500 means
        the service is reachable (auth errors included).
        """
        url = f"{self.settings.supabase.url.rstrip('/')}/rest/v1/"
        try:
            response = requests.get(
                url,
                headers={"apikey": self.settings.supabase.key},
                timeout=timeout,
            )
        except requests.RequestException as e:
            logger.debug(f"Supabase probe failed: {e}")
            return False
        return response.status_code < 500

    # ------------------------------------------------------------------
    # Session calls (opaque to the sync core)
    # ------------------------------------------------------------------

    def sign_in(self, email: str, password: str) -> Dict[str, Any]:
        response = self.client.auth.sign_in_with_password({"email": email, "password": password})
        if response.user is None or response.session is None:
            raise AuthenticationError("Login failed (incomplete session)")
        return self._session_dict(response.user, response.session)

    def sign_out(self) -> None:
        self.client.auth.sign_out()

    def current_session(self) -> Optional[Dict[str, Any]]:
        session = self.client.auth.get_session()
        if session is None or session.user is None:
            return None
        return self._session_dict(session.user, session)

    @staticmethod
    def _session_dict(user, session) -> Dict[str, Any]:
        metadata = getattr(user, "user_metadata", None) or {}
        return {
            "user_id": user.id,
            "email": user.email,
            "name": metadata.get("name") or metadata.get("nome") or "User",
            "token": session.access_token,
        }


# Singleton accessor
_backend: Optional[SupabaseBackend] = None


def get_backend() -> SupabaseBackend:
    """Get the global SupabaseBackend instance."""
    global _backend
    if _backend is None:
        _backend = SupabaseBackend()
    return _backend
