"""Tests for admin API key authentication."""

import logging
from unittest.mock import patch

import pytest
from fastapi import HTTPException

from rate_engine.core.auth import parse_api_keys, validate_api_key, verify_api_key
from rate_engine.core.errors import AuthenticationAppError


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("admin-key", {"admin-key"}),
        ("k1,k2,k3", {"k1", "k2", "k3"}),
        (" k1 , k2  ,k3 ", {"k1", "k2", "k3"}),
        ("k1,k2,k1", {"k1", "k2"}),
        (None, set()),
        ("", set()),
        (" ,  , ", set()),
    ],
)
def test_parse_api_keys(raw, expected) -> None:
    assert parse_api_keys(raw) == expected


class TestValidateAPIKey:
    @patch("rate_engine.core.auth.settings")
    def test_skipped_when_auth_disabled(self, mock_settings) -> None:
        mock_settings.app.api_key_required = False

        validate_api_key("anything")
        validate_api_key("")

    @pytest.mark.parametrize("configured", [None, "", " , "])
    @patch("rate_engine.core.auth.settings")
    def test_no_configured_keys(self, mock_settings, configured) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = configured

        with pytest.raises(AuthenticationAppError) as exc_info:
            validate_api_key("some-key")

        assert exc_info.value.code == "api_keys_not_configured"
        assert "APP_API_KEYS" in exc_info.value.details["hint"]

    @patch("rate_engine.core.auth.settings")
    def test_accepts_any_configured_key(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = " ops-key , ci-key "

        validate_api_key("ops-key")
        validate_api_key("ci-key")

    @pytest.mark.parametrize("provided", ["wrong", "", " ops-key "])
    @patch("rate_engine.core.auth.settings")
    def test_rejects_unknown_key(self, mock_settings, provided) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = "ops-key"

        with pytest.raises(AuthenticationAppError) as exc_info:
            validate_api_key(provided)

        assert exc_info.value.code == "invalid_api_key"

    @patch("rate_engine.core.auth.settings")
    def test_rejected_key_is_logged_as_hash(self, mock_settings, caplog) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = "ops-key"

        with caplog.at_level(logging.WARNING, logger="rate_engine.core.auth"):
            with pytest.raises(AuthenticationAppError):
                validate_api_key("leaked-admin-secret")

        record = next(r for r in caplog.records if r.getMessage() == "auth.failed")
        assert record.reason == "invalid_api_key"
        assert "leaked-admin-secret" not in record.api_key_hash
        assert len(record.api_key_hash) == 16


class TestVerifyAPIKeyDependency:
    @pytest.mark.asyncio
    @patch("rate_engine.core.auth.settings")
    async def test_open_when_auth_disabled(self, mock_settings) -> None:
        mock_settings.app.api_key_required = False

        await verify_api_key(x_api_key=None)

    @pytest.mark.asyncio
    @patch("rate_engine.core.auth.settings")
    async def test_missing_header_is_403(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = "ops-key"

        with pytest.raises(HTTPException) as exc_info:
            await verify_api_key(x_api_key=None)

        assert exc_info.value.status_code == 403
        assert "X-API-Key" in exc_info.value.detail

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "configured, detail",
        [("ops-key", "Invalid or missing API key"), (None, "no valid keys are configured")],
    )
    @patch("rate_engine.core.auth.settings")
    async def test_rejections_are_403(self, mock_settings, configured, detail) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = configured

        with pytest.raises(HTTPException) as exc_info:
            await verify_api_key(x_api_key="wrong-key")

        assert exc_info.value.status_code == 403
        assert detail in exc_info.value.detail

    @pytest.mark.asyncio
    @patch("rate_engine.core.auth.settings")
    async def test_valid_key_passes(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = "ops-key,ci-key"

        await verify_api_key(x_api_key="ci-key")
