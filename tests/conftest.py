"""
eepdesk - Test Configuration and Fixtures
"""
import time
from typing import Callable, List

import httpx
import pytest
from jose import jwt

from eepdesk.api import EepDeskApi
from eepdesk.api_client import ApiClient
from eepdesk.config import DeskConfig
from eepdesk.debug_events import DebugEventLog
from eepdesk.models import User
from eepdesk.permissions import PermissionSet
from eepdesk.token_store import TokenStore

BASE_URL = "http://testserver/api"
TEST_SECRET = "test-secret"


def make_token(expires_in: int = 300, **claims) -> str:
    """JWT with an `exp` claim `expires_in` seconds from now"""
    payload = {"token_type": "access", "user_id": 1, "exp": int(time.time()) + expires_in}
    payload.update(claims)
    return jwt.encode(payload, TEST_SECRET, algorithm="HS256")


def make_user(role: str = "Viewer", is_admin: bool = False, **permissions) -> User:
    """User with the given module grants, e.g. tasks={"read": True}"""
    return User(
        id=7,
        username="tester",
        email="tester@example.com",
        is_admin=is_admin,
        role=role,
        permissions={name: PermissionSet.from_dict(grants) for name, grants in permissions.items()},
    )


class RecordingNavigator:
    """Stands in for the router; remembers every route"""

    def __init__(self):
        self.routes: List[str] = []

    def __call__(self, route: str) -> None:
        self.routes.append(route)


@pytest.fixture
def config(tmp_path) -> DeskConfig:
    """Config pointing at a throwaway directory"""
    return DeskConfig(api_base_url=BASE_URL, config_dir=str(tmp_path), refresh_timeout=5)


@pytest.fixture
def token_store() -> TokenStore:
    """In-memory token store"""
    return TokenStore()


@pytest.fixture
def navigator() -> RecordingNavigator:
    return RecordingNavigator()


@pytest.fixture
def events() -> DebugEventLog:
    return DebugEventLog()


@pytest.fixture
def make_client(config, token_store, navigator, events) -> Callable[..., ApiClient]:
    """Build an ApiClient whose requests are answered by `handler`"""

    def factory(handler) -> ApiClient:
        return ApiClient(
            config,
            token_store,
            events=events,
            transport=httpx.MockTransport(handler),
            navigate=navigator,
        )

    return factory


@pytest.fixture
def make_api(make_client) -> Callable[..., EepDeskApi]:
    def factory(handler) -> EepDeskApi:
        return EepDeskApi(make_client(handler))

    return factory
