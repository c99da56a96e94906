"""Tests for the bearer-token store."""

from __future__ import annotations

import logging

from flexy.config import Settings
from flexy.services.auth_service import TokenStore


class TestTokenStore:
    def test_empty_by_default(self):
        assert TokenStore().get_token() is None

    def test_initial_token(self):
        assert TokenStore("abc").get_token() == "abc"

    def test_empty_string_treated_as_missing(self):
        assert TokenStore("").get_token() is None

    def test_clear(self, caplog):
        store = TokenStore("abc")
        with caplog.at_level(logging.INFO, logger="flexy.services.auth_service"):
            store.clear()
        assert store.get_token() is None
        assert "Clearing stored auth token" in caplog.text

    def test_clear_when_empty_is_quiet(self, caplog):
        with caplog.at_level(logging.INFO, logger="flexy.services.auth_service"):
            TokenStore().clear()
        assert caplog.records == []

    def test_from_settings(self):
        store = TokenStore.from_settings(Settings(_env_file=None, auth_token="from-env"))
        assert store.get_token() == "from-env"
