"""
Session token storage

The access/refresh pair is kept in ~/.eepdesk/credentials.json (mode 0600)
so a session survives between CLI invocations. Ordinary API calls only read
from here; writes happen at login, logout and inside the refresh protocol.
"""

import os
import json
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Optional

from jose import JWTError, jwt

from eepdesk.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class Session:
    """Stored session credentials"""
    access_token: str
    refresh_token: Optional[str] = None


def decode_token_expiry(token: Optional[str]) -> Optional[float]:
    """
    Unix time at which `token` expires, read from its unverified `exp`
    claim. None when the token is malformed or carries no usable expiry.
    """
    if not token:
        return None
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        return None
    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    return float(exp)


class TokenStore:
    """
    Durable access/refresh token pair.

    With no path the store lives in memory only.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path) if path else None
        self._session: Optional[Session] = None
        self._load()

    def _load(self) -> bool:
        """Load credentials from file"""
        if self.path and self.path.exists():
            try:
                with open(self.path, 'r') as f:
                    data = json.load(f)
                self._session = Session(**data)
                return True
            except (OSError, ValueError, TypeError) as e:
                logger.warning(f"Could not load credentials from {self.path}: {e}")
        return False

    def _save(self) -> None:
        """Save credentials to file"""
        if not self.path:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(asdict(self._session), f, indent=2)
        # Secure the file (Unix only)
        try:
            os.chmod(self.path, 0o600)
        except OSError:
            pass

    @property
    def access_token(self) -> Optional[str]:
        return self._session.access_token if self._session else None

    @property
    def refresh_token(self) -> Optional[str]:
        return self._session.refresh_token if self._session else None

    def has_session(self) -> bool:
        return bool(self.access_token)

    def save(self, access_token: str, refresh_token: Optional[str] = None) -> None:
        """Store a fresh pair (login)"""
        self._session = Session(access_token=access_token, refresh_token=refresh_token)
        self._save()

    def set_access_token(self, access_token: str) -> None:
        """Replace the access token, keeping the refresh token (refresh)"""
        refresh_token = self._session.refresh_token if self._session else None
        self._session = Session(access_token=access_token, refresh_token=refresh_token)
        self._save()

    def clear(self) -> None:
        """Forget both tokens (logout / dead session)"""
        self._session = None
        if self.path and self.path.exists():
            self.path.unlink()
