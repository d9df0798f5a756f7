# =============================================================================
# bills_core/services/auth_service.py
# Session issuance on top of the remote backend
# =============================================================================
"""
Authentication is an opaque remote call. This service only validates input,
keeps the last authenticated identity in the local cache so the app can
start offline, and clears it again on logout.
"""

from __future__ import annotations
from typing import Any, Dict, Optional

from bills_core.data.supabase_client import RemoteBackend, classify_exception
from bills_core.errors import AuthenticationError, BillsError, TransientNetworkError, safe_execute
from bills_core.models.validation import validate_login
from bills_core.offline.cache_manager import CacheKey, LocalCache, NamespacedCache
from bills_core.services.base_service import BaseService, ServiceResult


class AuthService(BaseService):
    """
    Login, session restore and logout.

    Usage:
        auth = AuthService(backend, cache)
        result = auth.login("ana@example.com", "secret")
        if result:
            user_id = result.data["user_id"]
    """

    def __init__(self, backend: RemoteBackend, cache: LocalCache):
        super().__init__()
        self.backend = backend
        self._auth = NamespacedCache(cache, CacheKey.AUTH)
        self._user = NamespacedCache(cache, CacheKey.USER)

    @property
    def cached_identity(self) -> Optional[Dict[str, Any]]:
        """Last authenticated user, as cached."""
        return self._user.read()

    def _remember(self, session: Dict[str, Any]) -> None:
        self._auth.save({"user_id": session["user_id"], "token": session.get("token")})
        self._user.save({
            "user_id": session["user_id"],
            "email": session.get("email"),
            "name": session.get("name"),
        })

    def login(self, email: str, password: str) -> ServiceResult:
        """
        Authenticate against the backend.

        Returns:
            ServiceResult with the user identity (without the token)
        """
        try:
            address = validate_login(email, password)
            with self.log_operation(f"Login for {address}"):
                session = self.backend.sign_in(address, password)
        except BillsError as e:
            return self.fail(e, operation="login")
        except Exception as e:
            return self.fail(classify_exception(e, operation="login"), operation="login")

        self._remember(session)
        return ServiceResult.ok(self.cached_identity)

    def restore_session(self) -> ServiceResult:
        """
        Resume a previous session. When the backend cannot be reached the
        cached identity is used so the app can open in offline mode.
        """
        try:
            session = self.backend.current_session()
        except Exception as e:
            error = classify_exception(e, operation="restore_session")
            identity = self.cached_identity
            if isinstance(error, TransientNetworkError) and identity:
                self.logger.warning(f"Backend unreachable, using cached identity: {error.message}")
                return ServiceResult.ok(identity, metadata={"offline": True})
            return self.fail(error, operation="restore_session")

        if session is None:
            self._auth.remove()
            self._user.remove()
            return self.fail(AuthenticationError("No active session"), operation="restore_session")

        self._remember(session)
        return ServiceResult.ok(self.cached_identity, metadata={"offline": False})

    def logout(self) -> ServiceResult:
        """Sign out remotely (best effort) and forget the cached identity."""
        safe_execute(self.backend.sign_out, error_message="Remote sign out failed")

        self._auth.remove()
        self._user.remove()
        self.logger.info("User logged out")
        return ServiceResult.ok()
