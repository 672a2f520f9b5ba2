"""
Tests for API Application Factory (src/api/__init__.py).

Tests:
- create_app() returns FastAPI instance
- Health check endpoint at root level
- Production mode: wildcard CORS rejection, docs/redoc disabled
- Development mode: docs/redoc enabled
- Missing API secret fails fast
- Unhandled exceptions become a 500 envelope
"""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.api import _ALLOWED_HEADERS, create_app


class TestAllowedHeaders:
    """Tests for the CORS header allow-list."""

    def test_authorization_header(self) -> None:
        assert "Authorization" in _ALLOWED_HEADERS

    def test_no_wildcard(self) -> None:
        assert "*" not in _ALLOWED_HEADERS


class TestCreateApp:
    """Tests for create_app()."""

    def test_create_app_returns_fastapi(self) -> None:
        assert isinstance(create_app(), FastAPI)

    def test_app_title_and_version(self) -> None:
        app = create_app()
        assert app.title == "Quit-Plan Engine"
        assert app.version == "0.1.0"

    def test_root_health(self) -> None:
        client = TestClient(create_app())
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_development_mode_has_docs(self) -> None:
        with patch.dict(os.environ, {"QUITPLAN_ENVIRONMENT": "development"}):
            app = create_app()
        assert app.docs_url == "/docs"
        assert app.redoc_url == "/redoc"

    def test_production_mode_disables_docs(self) -> None:
        with patch.dict(os.environ, {"QUITPLAN_ENVIRONMENT": "production"}):
            app = create_app()
        assert app.docs_url is None
        assert app.redoc_url is None

    def test_production_wildcard_cors_raises(self) -> None:
        env = {"QUITPLAN_ENVIRONMENT": "production", "QUITPLAN_CORS_ORIGINS": "*"}
        with patch.dict(os.environ, env):
            with pytest.raises(ValueError, match="wildcard"):
                create_app()

    def test_cors_origin_echoed(self) -> None:
        with patch.dict(os.environ, {"QUITPLAN_CORS_ORIGINS": "http://localhost:3000, "}):
            client = TestClient(create_app())
        resp = client.get("/health", headers={"Origin": "http://localhost:3000"})
        assert resp.headers["access-control-allow-origin"] == "http://localhost:3000"

    def test_missing_secret_fails_fast(self) -> None:
        with patch.dict(os.environ, {"QUITPLAN_API_SECRET_KEY": ""}):
            with pytest.raises(RuntimeError):
                create_app()

    def test_unhandled_exception_is_500_envelope(self) -> None:
        app = create_app()

        @app.get("/boom")
        def boom() -> None:
            raise RuntimeError("kaboom")

        client = TestClient(app, raise_server_exceptions=False)
        resp = client.get("/boom")
        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "INTERNAL_ERROR"
