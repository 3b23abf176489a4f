"""
Unit Tests for session token storage
"""
import json
import os
import stat
import sys

import pytest

from eepdesk.token_store import TokenStore, decode_token_expiry

from conftest import make_token


class TestTokenStore:
    """Test token persistence"""

    def test_memory_store(self):
        store = TokenStore()

        assert store.has_session() is False
        store.save("access", "refresh")

        assert store.access_token == "access"
        assert store.refresh_token == "refresh"
        assert store.has_session() is True

    def test_set_access_token_keeps_refresh_token(self):
        store = TokenStore()
        store.save("old", "refresh")

        store.set_access_token("new")

        assert store.access_token == "new"
        assert store.refresh_token == "refresh"

    def test_clear_forgets_both(self):
        store = TokenStore()
        store.save("access", "refresh")

        store.clear()

        assert store.access_token is None
        assert store.refresh_token is None
        assert store.has_session() is False

    def test_survives_reload(self, tmp_path):
        path = tmp_path / "credentials.json"
        TokenStore(str(path)).save("access", "refresh")

        reloaded = TokenStore(str(path))

        assert reloaded.access_token == "access"
        assert reloaded.refresh_token == "refresh"
        assert json.loads(path.read_text()) == {"access_token": "access", "refresh_token": "refresh"}

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX file modes")
    def test_file_is_private(self, tmp_path):
        path = tmp_path / "credentials.json"

        TokenStore(str(path)).save("access", "refresh")

        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_clear_removes_file(self, tmp_path):
        path = tmp_path / "credentials.json"
        store = TokenStore(str(path))
        store.save("access", "refresh")

        store.clear()

        assert not path.exists()

    def test_corrupt_file_means_no_session(self, tmp_path):
        path = tmp_path / "credentials.json"
        path.write_text("{not json")

        store = TokenStore(str(path))

        assert store.has_session() is False


class TestDecodeTokenExpiry:
    """Test reading `exp` without verification"""

    def test_reads_exp(self):
        token = make_token(expires_in=120)

        expiry = decode_token_expiry(token)

        assert expiry is not None
        assert isinstance(expiry, float)

    @pytest.mark.parametrize("token", [None, "", "not-a-jwt", "a.b.c"])
    def test_malformed_token(self, token):
        assert decode_token_expiry(token) is None

    def test_token_without_exp(self):
        token = make_token(exp="soon")

        assert decode_token_expiry(token) is None
