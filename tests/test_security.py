# tests/test_security.py
"""Tests for app/transport/security.py: monitoring auth, headers, error sanitization."""
from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from app.core.confirmation.errors import JobNotFound


def _request(host: str = "127.0.0.1", headers: dict | None = None):
    request = MagicMock()
    request.client.host = host
    request.headers = headers or {}
    return request


# ============================================================================
# Client IP / Internal network
# ============================================================================

class TestClientIP:
    @patch("app.transport.security.settings")
    def test_direct_connection_ignores_forwarded_header(self, mock_settings):
        mock_settings.trust_proxy_headers = False
        from app.transport.security import _get_client_ip
        request = _request("10.0.0.5", {"X-Forwarded-For": "203.0.113.5"})
        assert _get_client_ip(request) == "10.0.0.5"

    @patch("app.transport.security.settings")
    def test_trusted_proxy_uses_first_forwarded_ip(self, mock_settings):
        mock_settings.trust_proxy_headers = True
        from app.transport.security import _get_client_ip
        request = _request("172.17.0.1", {"X-Forwarded-For": "203.0.113.5, 10.0.0.1"})
        assert _get_client_ip(request) == "203.0.113.5"


class TestInternalIP:
    def setup_method(self):
        from app.transport.security import _get_internal_networks
        _get_internal_networks.cache_clear()

    def teardown_method(self):
        from app.transport.security import _get_internal_networks
        _get_internal_networks.cache_clear()

    @patch("app.transport.security.settings")
    def test_private_ranges(self, mock_settings):
        mock_settings.internal_networks = "10.0.0.0/8,192.168.0.0/16,127.0.0.0/8"
        from app.transport.security import _is_internal_ip
        assert _is_internal_ip("10.1.2.3") is True
        assert _is_internal_ip("192.168.1.1") is True
        assert _is_internal_ip("8.8.8.8") is False

    @patch("app.transport.security.settings")
    def test_invalid_ip_and_cidr(self, mock_settings):
        mock_settings.internal_networks = "not-a-cidr,10.0.0.0/8"
        from app.transport.security import _is_internal_ip
        assert _is_internal_ip("not-an-ip") is False
        assert _is_internal_ip("10.0.0.1") is True


# ============================================================================
# Metrics auth
# ============================================================================

class TestRequireMetricsAuth:
    def setup_method(self):
        from app.transport.security import _get_internal_networks
        _get_internal_networks.cache_clear()

    def teardown_method(self):
        from app.transport.security import _get_internal_networks
        _get_internal_networks.cache_clear()

    @patch("app.transport.security.settings")
    def test_valid_token(self, mock_settings):
        mock_settings.metrics_token = "m" * 32
        from app.transport.security import require_metrics_auth
        creds = HTTPAuthorizationCredentials(scheme="Bearer", credentials="m" * 32)
        assert require_metrics_auth(_request("8.8.8.8"), creds) is None

    @patch("app.transport.security.settings")
    def test_missing_token(self, mock_settings):
        mock_settings.metrics_token = "m" * 32
        from app.transport.security import require_metrics_auth
        with pytest.raises(HTTPException) as exc_info:
            require_metrics_auth(_request(), None)
        assert exc_info.value.status_code == 401

    @patch("app.transport.security.settings")
    def test_wrong_token(self, mock_settings):
        mock_settings.metrics_token = "m" * 32
        from app.transport.security import require_metrics_auth
        creds = HTTPAuthorizationCredentials(scheme="Bearer", credentials="x" * 32)
        with pytest.raises(HTTPException) as exc_info:
            require_metrics_auth(_request(), creds)
        assert exc_info.value.status_code == 401

    @patch("app.transport.security.settings")
    def test_no_token_falls_back_to_internal_network(self, mock_settings):
        mock_settings.metrics_token = None
        mock_settings.trust_proxy_headers = False
        mock_settings.internal_networks = "127.0.0.0/8"
        from app.transport.security import require_metrics_auth
        assert require_metrics_auth(_request("127.0.0.1"), None) is None
        with pytest.raises(HTTPException) as exc_info:
            require_metrics_auth(_request("203.0.113.9"), None)
        assert exc_info.value.status_code == 403


# ============================================================================
# Security headers
# ============================================================================

class TestSecurityHeaders:
    @patch("app.transport.security.settings")
    def test_owasp_headers_present(self, mock_settings):
        mock_settings.is_production = False
        mock_settings.is_staging = False
        from app.transport.security import SecurityHeaders
        response = MagicMock()
        response.headers = {}
        SecurityHeaders.add_security_headers(response)
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert "Content-Security-Policy" in response.headers
        assert "Strict-Transport-Security" not in response.headers

    @patch("app.transport.security.settings")
    def test_hsts_in_production(self, mock_settings):
        mock_settings.is_production = True
        mock_settings.is_staging = False
        from app.transport.security import SecurityHeaders
        response = MagicMock()
        response.headers = {}
        SecurityHeaders.add_security_headers(response)
        assert "Strict-Transport-Security" in response.headers


# ============================================================================
# Error message sanitization
# ============================================================================

class TestSanitizeErrorMessage:
    def test_dev_shows_detail(self):
        from app.transport.security import sanitize_error_message
        err = ValueError("detailed info")
        assert "detailed info" in sanitize_error_message(err, is_production=False)

    def test_production_generic_message(self):
        from app.transport.security import sanitize_error_message
        result = sanitize_error_message(ValueError("detailed info"), is_production=True)
        assert result == "Invalid input"

    def test_production_unknown_error_type(self):
        from app.transport.security import sanitize_error_message
        result = sanitize_error_message(RuntimeError("internal"), is_production=True)
        assert result == "An error occurred"

    def test_job_not_found_is_kept_in_production(self):
        from app.transport.security import sanitize_error_message
        result = sanitize_error_message(JobNotFound("J1"), is_production=True)
        assert result == "Job J1 not found"
