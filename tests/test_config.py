"""Settings parsing — timezone, late cutoff, CORS origins."""

from __future__ import annotations

from datetime import time

from hcm.config import Settings, settings


class TestSettings:

    def test_late_cutoff_parsed(self):
        assert settings.late_cutoff == time(11, 0)

    def test_late_cutoff_without_minutes(self):
        custom = Settings(JWT_SECRET="x", ATTENDANCE_LATE_CUTOFF="10")
        assert custom.late_cutoff == time(10, 0)

    def test_local_timezone(self):
        assert settings.local_tz.key == "Asia/Kolkata"

    def test_invalid_cors_origins_fall_back(self):
        custom = Settings(JWT_SECRET="x", CORS_ORIGINS="not json")
        assert custom.cors_origins_list == ["http://localhost:3000"]

    def test_only_settings_this_service_reads(self):
        fields = set(Settings.model_fields)
        assert "DATABASE_URL_SYNC" not in fields
        assert "JWT_EXPIRY_HOURS" not in fields
