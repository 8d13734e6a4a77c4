"""
Session context: who is logged in on this client

Identity lives in an explicit object with an init/teardown lifecycle instead of
module-level globals. Login itself belongs to an external identity provider.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Tuple

from app.client.storage import KeyValueStore

logger = logging.getLogger(__name__)

TOKEN_KEY = "token"

ROLE_ADMIN = "admin"
ROLE_STUDENT = "student"


class NotAuthenticated(Exception):
    """No user, or the user cannot take exams"""


@dataclass(frozen=True)
class UserRecord:
    """User record returned by the identity provider"""
    id: int
    name: str
    role: str
    email: Optional[str] = None

    @property
    def is_student(self) -> bool:
        return self.role == ROLE_STUDENT


class IdentityProvider(Protocol):
    """External login service"""

    def login(self, credentials: Dict[str, Any]) -> Tuple[str, UserRecord]:
        ...

    def profile(self, token: str) -> UserRecord:
        ...


class SessionContext:
    """Holds the token and user record for components that need identity"""

    def __init__(self, provider: IdentityProvider, store: KeyValueStore):
        self.provider = provider
        self.store = store
        self.token: Optional[str] = None
        self.user: Optional[UserRecord] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    def initialize(self) -> Optional[UserRecord]:
        """
        Hydrate from the persisted token on app start

        A token the provider rejects is discarded.
        """
        token = self.store.get(TOKEN_KEY)
        if not token:
            return None

        try:
            user = self.provider.profile(token)
        except Exception as e:
            logger.warning(f"Persisted token rejected: {str(e)}")
            self.store.delete(TOKEN_KEY)
            self.token = None
            self.user = None
            return None

        self.token = token
        self.user = user
        logger.info(f"Session restored for user {user.id} ({user.role})")
        return user

    def login(self, credentials: Dict[str, Any]) -> UserRecord:
        token, user = self.provider.login(credentials)
        self.store.set(TOKEN_KEY, token)
        self.token = token
        self.user = user
        logger.info(f"User {user.id} logged in as {user.role}")
        return user

    def logout(self) -> None:
        if self.user is not None:
            logger.info(f"User {self.user.id} logged out")
        self.store.delete(TOKEN_KEY)
        self.token = None
        self.user = None

    def require_student(self) -> int:
        """Student id of the logged-in user"""
        if self.user is None:
            raise NotAuthenticated("Not logged in")
        if not self.user.is_student:
            raise NotAuthenticated(f"Role {self.user.role!r} cannot take exams")
        return self.user.id
