"""Tests for the app factory: health check, JSON error handlers, startup config checks."""

from __future__ import annotations

import json

import pytest

from services.app_store import VerificationSettings


class TestHealth:
    def test_health(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "Server is running"
        assert body["environment"] == "development"
        assert body["timestamp"]


class TestErrorHandlers:
    """Every failure comes back as JSON."""

    def test_unknown_route(self, client):
        resp = client.get("/nope")
        assert resp.status_code == 404
        assert resp.get_json() == {"message": "Route not found", "path": "/nope"}

    def test_method_not_allowed(self, client):
        resp = client.delete("/api/adblock/rules")
        assert resp.status_code == 405
        assert resp.is_json

    def test_unhandled_exception_dev(self, app):
        @app.route("/_boom")
        def _boom():
            raise RuntimeError("kaboom")

        resp = app.test_client().get("/_boom")
        assert resp.status_code == 500
        assert resp.get_json() == {"message": "Internal server error", "error": "kaboom"}

    def test_unhandled_exception_production(self, make_app):
        app = make_app(APP_ENV="production")
        assert app.config["EXPOSE_ERROR_DETAIL"] is False

        @app.route("/_boom")
        def _boom():
            raise RuntimeError("secret internals")

        resp = app.test_client().get("/_boom")
        assert resp.status_code == 500
        assert resp.get_json()["error"] == "An error occurred"
        assert app.test_client().get("/").get_json()["environment"] == "production"


class TestServiceToggles:
    def test_adblock_disabled(self, make_app):
        app = make_app(ADBLOCK_ENABLED=False)
        client = app.test_client()
        assert client.get("/api/adblock/rules").status_code == 404
        assert "adblock_defaults" not in app.extensions

    def test_notifications_disabled(self, make_app):
        app = make_app(NOTIFICATIONS_ENABLED=False)
        assert app.test_client().post("/notifications/production", json={}).status_code == 404
        assert "appstore_verification" not in app.extensions

    def test_bad_default_rules_file_fails_start(self, make_app, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps({"version": "x", "rules": {"bad": {"trigger": "[("}}}))
        with pytest.raises(ValueError, match="invalid trigger regex"):
            make_app(ADBLOCK_DEFAULT_RULES_PATH=str(path))

    def test_custom_default_rules_file(self, make_app, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps({
            "version": "2025-01-01",
            "rules": {"only": {"trigger": ".*only\\..*", "category": "ads"}},
        }))
        app = make_app(ADBLOCK_DEFAULT_RULES_PATH=str(path))
        body = app.test_client().get("/api/adblock/rules").get_json()
        assert [r["trigger"] for r in body] == [".*only\\..*"]
        assert body[0]["action"] == "block"


class TestVerificationSettingsAtStartup:
    """Key, root and marker OIDs are read once; bad paths stop the app from starting."""

    def test_settings_loaded_once(self, app):
        settings = app.extensions["appstore_verification"]
        assert isinstance(settings, VerificationSettings)
        assert settings.key is not None
        assert settings.root is None
        assert settings.algorithms == ("ES256",)
        assert settings.leaf_oid == "1.2.840.113635.100.6.11.1"
        assert settings.intermediate_oid == "1.2.840.113635.100.6.2.1"

    def test_missing_key_file_fails_start(self, make_app, tmp_path):
        with pytest.raises(RuntimeError, match="APPSTORE_VERIFY_KEY_PATH .* not readable"):
            make_app(APPSTORE_VERIFY_KEY="", APPSTORE_VERIFY_KEY_PATH=str(tmp_path / "missing.pem"))

    def test_missing_root_file_fails_start(self, make_app, tmp_path):
        with pytest.raises(RuntimeError, match="APPSTORE_ROOT_CERT_PATH .* not readable"):
            make_app(APPSTORE_ROOT_CERT_PATH=str(tmp_path / "missing-root.cer"))

    def test_unparseable_root_fails_start(self, make_app, tmp_path):
        bad = tmp_path / "root.cer"
        bad.write_bytes(b"not a certificate")
        with pytest.raises(RuntimeError, match="is not a certificate"):
            make_app(APPSTORE_ROOT_CERT_PATH=str(bad))

    def test_bad_pem_key_fails_start(self, make_app):
        with pytest.raises(RuntimeError, match="not a valid PEM public key"):
            make_app(APPSTORE_VERIFY_KEY="-----BEGIN PUBLIC KEY-----\ngarbage\n-----END PUBLIC KEY-----")

    def test_marker_oids_configurable(self, make_app):
        app = make_app(APPSTORE_LEAF_CERT_OID="", APPSTORE_INTERMEDIATE_CERT_OID="1.2.3.4")
        settings = app.extensions["appstore_verification"]
        assert settings.leaf_oid is None
        assert settings.intermediate_oid == "1.2.3.4"
