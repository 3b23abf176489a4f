"""
eepdesk - application wiring

Builds the object graph every front end needs (token store, API client,
refresh scheduler, auth manager, controllers) from one DeskConfig.
"""

from typing import Callable, List, Optional, Union
from urllib.parse import urlparse

import httpx
from rich.console import Console

from eepdesk.api import EepDeskApi
from eepdesk.api_client import HOME_ROUTE, LOGIN_ROUTE, ApiClient
from eepdesk.auth import AuthManager
from eepdesk.config import DeskConfig
from eepdesk.controllers import CONTROLLERS, ListController
from eepdesk.debug_events import DebugEventLog
from eepdesk.logging_config import get_logger
from eepdesk.mock_backend import MockBackend, MockBackendTransport
from eepdesk.permissions import AppModule
from eepdesk.refresh import TokenRefreshScheduler
from eepdesk.renderer import TableRenderer
from eepdesk.token_store import TokenStore

logger = get_logger(__name__)


class EepDeskApp:
    """
    One signed-in (or not yet signed-in) desk session.

    Usage:
        async with EepDeskApp(config) as app:
            await app.auth.init_session()
            students = app.controller_for(AppModule.STUDENTS)
            await students.fetch()
    """

    def __init__(
        self,
        config: DeskConfig,
        console: Optional[Console] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.console = console or Console()
        self.route = HOME_ROUTE
        self.route_history: List[str] = []

        if transport is None and config.use_mock_backend:
            self.backend: Optional[MockBackend] = MockBackend(data_file=config.mock_data_file)
            transport = MockBackendTransport(self.backend, base_path=urlparse(config.api_base_url).path)
            logger.info("Using the mock backend")
        else:
            self.backend = None

        self.token_store = TokenStore(config.credentials_file)
        self.events = DebugEventLog()
        self.client = ApiClient(config, self.token_store, events=self.events,
                                transport=transport, navigate=self.navigate)
        self.api = EepDeskApi(self.client)
        self.scheduler = TokenRefreshScheduler(self.client.refresh, buffer_seconds=config.refresh_buffer_seconds)
        self.auth = AuthManager(self.api, self.token_store, self.scheduler, navigate=self.navigate)
        self.renderer = TableRenderer(self.console)

    async def __aenter__(self) -> "EepDeskApp":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        self.scheduler.cancel()
        await self.client.aclose()

    def navigate(self, route: str) -> None:
        self.route = route
        self.route_history.append(route)
        if route == LOGIN_ROUTE:
            logger.info("Session ended; login required")

    @property
    def login_required(self) -> bool:
        return self.route == LOGIN_ROUTE or not self.auth.is_authenticated

    def controller_for(self, module: Union[AppModule, str], **kwargs) -> ListController:
        module = AppModule(module)
        if module not in CONTROLLERS:
            raise ValueError(f"{module.label} has no list view")
        user_provider: Callable = lambda: self.auth.user
        return CONTROLLERS[module](self.api, user_provider=user_provider, **kwargs)
