"""Tests for provisional / real session identifier helpers."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from flexy.services.session_ids import (
    is_provisional_session_id,
    is_real_session_id,
    make_provisional_session_id,
)


def test_provisional_format():
    with patch("flexy.services.session_ids.time.time", return_value=1700000000.5):
        assert make_provisional_session_id(42) == "fallback-42-1700000000500"


def test_provisional_is_not_real():
    session_id = make_provisional_session_id("ws-1")
    assert is_provisional_session_id(session_id)
    assert not is_real_session_id(session_id)


@pytest.mark.parametrize("session_id", ["sess-1", "9f1c2d", "42"])
def test_real_ids(session_id):
    assert is_real_session_id(session_id)
    assert not is_provisional_session_id(session_id)


@pytest.mark.parametrize("session_id", [None, "", "   "])
def test_blank_ids_are_neither(session_id):
    assert not is_real_session_id(session_id)
    assert not is_provisional_session_id(session_id)
