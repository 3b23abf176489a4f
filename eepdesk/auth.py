"""
Session management
==================

  login       Exchange credentials for a token pair, load the user
  init        Resume a stored session on start-up
  logout      Forget the session and return to the login route

The AuthManager owns "who is signed in". Tokens live in the TokenStore; the
renewal timer lives in the TokenRefreshScheduler. When the API client has to
tear a session down (refresh failed) the manager drops its user as well.
"""

from typing import Callable, Optional, Union

from eepdesk.api import EepDeskApi
from eepdesk.api_client import HOME_ROUTE, LOGIN_ROUTE
from eepdesk.exceptions import ApiError, EepDeskError
from eepdesk.logging_config import get_logger, set_username
from eepdesk.models import User
from eepdesk.permissions import AppModule, ModulePermissions, permissions_for
from eepdesk.refresh import TokenRefreshScheduler
from eepdesk.token_store import TokenStore

logger = get_logger(__name__)


class AuthManager:
    """
    Signed-in user and session lifecycle.

    Usage:
        auth = AuthManager(api, token_store, scheduler, navigate=router.go)
        await auth.init_session()
        if not auth.is_authenticated:
            await auth.login("mockadmin", "password")
        auth.permissions(AppModule.STUDENTS).can_create
    """

    def __init__(
        self,
        api: EepDeskApi,
        token_store: TokenStore,
        scheduler: Optional[TokenRefreshScheduler] = None,
        navigate: Optional[Callable[[str], None]] = None,
    ):
        self.api = api
        self.token_store = token_store
        self.scheduler = scheduler
        self.navigate = navigate
        self.user: Optional[User] = None
        self.loading = False

        api.client.on_session_expired(self._on_session_expired)

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None and self.token_store.has_session()

    def permissions(self, module: Union[AppModule, str]) -> ModulePermissions:
        return permissions_for(self.user, module)

    def _go(self, route: str) -> None:
        if self.navigate is not None:
            self.navigate(route)

    def _arm_renewal(self) -> None:
        token = self.token_store.access_token
        if self.scheduler is not None and token:
            self.scheduler.schedule(token)

    def _set_user(self, user: Optional[User]) -> None:
        self.user = user
        set_username(user.username if user else "")

    async def login(self, username: str, password: str) -> User:
        """Authenticate, store both tokens and load the user"""
        try:
            tokens = await self.api.login(username, password)
        except ApiError:
            logger.log_auth_event("login", False, username=username)
            raise

        self.token_store.save(tokens["accessToken"], tokens["refreshToken"])
        self._arm_renewal()

        try:
            user = await self.api.get_current_user()
        except EepDeskError:
            self._drop_session()
            raise

        self._set_user(user)
        logger.log_auth_event("login", True, username=user.username)
        self._go(HOME_ROUTE)
        return user

    async def init_session(self) -> Optional[User]:
        """
        Resume a stored session. Any failure while loading the user means
        the stored tokens are unusable: they are discarded.
        """
        if not self.token_store.has_session():
            return None

        self.loading = True
        try:
            self._arm_renewal()
            user = await self.api.get_current_user()
        except EepDeskError as e:
            logger.warning(f"Stored session is not usable: {e.message}")
            self._drop_session()
            return None
        finally:
            self.loading = False

        self._set_user(user)
        return user

    async def refresh_user(self) -> Optional[User]:
        """Reload the current user (after a role change); logs out on failure"""
        try:
            user = await self.api.get_current_user()
        except EepDeskError as e:
            logger.warning(f"Could not refresh user data: {e.message}")
            self.logout()
            return None
        self._set_user(user)
        return user

    def logout(self) -> None:
        username = self.user.username if self.user else None
        self._drop_session()
        logger.log_auth_event("logout", True, username=username)
        self._go(LOGIN_ROUTE)

    def _drop_session(self) -> None:
        if self.scheduler is not None:
            self.scheduler.cancel()
        self.token_store.clear()
        self._set_user(None)

    def _on_session_expired(self) -> None:
        # Tokens were already cleared and navigation done by the client
        if self.scheduler is not None:
            self.scheduler.cancel()
        self._set_user(None)
