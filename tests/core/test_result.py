"""Tests for the Ok / Err envelope."""

from __future__ import annotations

import pytest

from insight360.core.errors import FetchError
from insight360.core.result import Err, Ok


class TestOk:
    def test_unwrap_and_map(self):
        result = Ok(2)
        assert result.is_ok() and not result.is_err()
        assert result.unwrap() == 2
        assert result.map(lambda v: v * 10) == Ok(20)
        assert result.unwrap_or(0) == 2

    def test_inspect_passes_through(self):
        seen = []
        result = Ok("v").inspect(seen.append)
        assert seen == ["v"]
        assert result == Ok("v")

    def test_to_dict(self):
        assert Ok(1).to_dict() == {"ok": True, "value": 1}


class TestErr:
    def test_unwrap_raises(self):
        error = FetchError({"img": "denied"})
        result = Err(error)
        assert result.is_err()
        with pytest.raises(FetchError):
            result.unwrap()
        assert result.unwrap_or("fallback") == "fallback"

    def test_map_is_skipped(self):
        error = ValueError("x")
        result = Err(error).map(lambda v: v * 10)
        assert isinstance(result, Err)
        assert result.error is error

    def test_to_dict_uses_structured_error(self):
        data = Err(FetchError({"img": "denied"})).to_dict()
        assert data["ok"] is False
        assert data["error"]["error_type"] == "FetchError"

    def test_to_dict_plain_exception(self):
        data = Err(ValueError("bad")).to_dict()
        assert data["error"] == {"message": "bad", "error_type": "ValueError"}

    def test_pattern_matching(self):
        match Err(ValueError("x")):
            case Ok(value):
                outcome = value
            case Err(error):
                outcome = type(error).__name__
        assert outcome == "ValueError"
