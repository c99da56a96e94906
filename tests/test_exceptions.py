"""Tests for flexy.exceptions -- APIError."""

from __future__ import annotations

import pytest

from flexy.exceptions import APIError


class TestAPIError:
    def test_attributes(self):
        err = APIError("Workspace not found", status=404, code="NOT_FOUND")
        assert err.message == "Workspace not found"
        assert err.status == 404
        assert err.code == "NOT_FOUND"

    def test_str_representation(self):
        assert str(APIError("boom", status=500)) == "boom"

    def test_code_optional(self):
        assert APIError("boom", status=500).code is None

    def test_status_keyword_only(self):
        with pytest.raises(TypeError):
            APIError("boom", 500)  # type: ignore[misc]

    @pytest.mark.parametrize("status,expected", [(401, True), (403, False), (500, False)])
    def test_is_unauthorized(self, status, expected):
        assert APIError("x", status=status).is_unauthorized is expected

    def test_can_be_raised_and_caught(self):
        with pytest.raises(APIError, match="rate limited"):
            raise APIError("rate limited", status=429)
