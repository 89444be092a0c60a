"""
Tests for configuration loading and component wiring.
"""

import pytest

from duofinance.config import (
    AppSettings,
    EmailSettings,
    get_settings,
    validate_all_settings,
)
from duofinance.orchestrator import create_app_components
from duofinance.services.email import RecordingEmailDispatcher
from duofinance.services.kv import InMemoryKeyValueStore, JsonFileKeyValueStore
from duofinance.services.storage import InMemoryGateway


@pytest.fixture(autouse=True)
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestAppSettings:
    """Tests for AppSettings."""

    def test_defaults(self):
        """Test the business constants default values."""
        settings = AppSettings()
        assert settings.invitation_expiry_days == 7
        assert settings.free_monthly_transaction_limit == 5
        assert settings.default_notification_days == 3
        assert settings.min_password_length == 6
        assert settings.storage_backend == "memory"

    def test_admin_emails_list(self):
        """Test that admin emails are split and normalized."""
        settings = AppSettings(admin_emails=" Admin@Example.com, ,ops@example.com ")
        assert settings.admin_emails_list == ["admin@example.com", "ops@example.com"]

    def test_set_password_url(self):
        settings = AppSettings(app_url="https://app.test/")
        assert settings.set_password_url == "https://app.test/auth/set-password"

    def test_unknown_backend_rejected(self):
        with pytest.raises(ValueError):
            AppSettings(storage_backend="postgres")

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("INVITATION_EXPIRY_DAYS", "14")
        assert AppSettings().invitation_expiry_days == 14


class TestEmailSettings:
    """Tests for EmailSettings."""

    def test_default_endpoint(self):
        settings = EmailSettings(api_key="re_key")
        assert settings.api_url == "https://api.resend.com/emails"

    def test_api_key_required(self, monkeypatch):
        monkeypatch.delenv("EMAIL_API_KEY", raising=False)
        with pytest.raises(ValueError):
            EmailSettings()


class TestValidateAllSettings:
    """Tests for validate_all_settings."""

    def test_reports_missing_sections(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_SHEETS_CREDENTIALS_PATH", raising=False)
        monkeypatch.delenv("GOOGLE_SHEETS_SPREADSHEET_ID", raising=False)
        monkeypatch.setenv("EMAIL_API_KEY", "re_key")

        results = validate_all_settings()

        assert results["app"] is True
        assert results["email"] is True
        assert results["google_sheets"] is False
        assert "google_sheets_error" in results


class TestCreateAppComponents:
    """Tests for the component factory."""

    def test_memory_backend_by_default(self):
        components = create_app_components(settings=AppSettings(), use_email=False)

        assert isinstance(components.gateway, InMemoryGateway)
        assert components.email_dispatcher is None
        assert components.linking is not None

    def test_unconfigured_email_is_skipped(self, monkeypatch):
        monkeypatch.delenv("EMAIL_API_KEY", raising=False)
        components = create_app_components(settings=AppSettings())
        assert components.email_dispatcher is None

    def test_sheets_fallback_to_memory(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_SHEETS_CREDENTIALS_PATH", raising=False)
        monkeypatch.delenv("GOOGLE_SHEETS_SPREADSHEET_ID", raising=False)

        components = create_app_components(
            settings=AppSettings(storage_backend="google_sheets"), use_email=False
        )

        assert isinstance(components.gateway, InMemoryGateway)

    async def test_components_share_collaborators(self, now):
        emails = RecordingEmailDispatcher()
        components = create_app_components(
            settings=AppSettings(admin_emails="admin@example.com"),
            email_dispatcher=emails,
        )
        user_id, _ = await components.identity.create_user("alice@example.com")
        alice = await components.accounts.ensure_profile(user_id, "alice@example.com")

        await components.linking.send_invitation(alice.id, "bob@example.com", now)

        assert [m.to for m in emails.sent] == ["bob@example.com"]
        assert await components.accounts.find_by_email("bob@example.com") is not None

    def test_local_store_path_persists_preferences(self, tmp_path):
        """Notification preferences survive a restart when a store file is set."""
        path = tmp_path / "prefs.json"
        settings = AppSettings(local_store_path=str(path))

        components = create_app_components(settings=settings, use_email=False)
        assert isinstance(components.kv, JsonFileKeyValueStore)

        preferences = components.notification_settings.defaults()
        components.notification_settings.save(preferences.model_copy(update={"days_before_due": 10}))

        restarted = create_app_components(settings=settings, use_email=False)
        assert path.exists()
        assert restarted.notification_settings.load().days_before_due == 10

    def test_memory_store_by_default(self):
        components = create_app_components(settings=AppSettings(), use_email=False)
        assert isinstance(components.kv, InMemoryKeyValueStore)
