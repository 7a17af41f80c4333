import pytest

from app.core.config import Settings, parse_list_from_env, settings


class TestParseListFromEnv:
    """Tests pour la fonction utilitaire parse_list_from_env."""

    def test_parse_direct(self):
        """Test avec une liste Python directe."""
        result = parse_list_from_env(["val1", "val2", "val3"], "test_field")
        assert result == ["val1", "val2", "val3"]

    def test_parse_comma_separated_with_spaces(self):
        """Test avec format virgules et espaces."""
        result = parse_list_from_env("  val1 , val2 , val3  ", "test_field")
        assert result == ["val1", "val2", "val3"]

    def test_parse_json_format(self):
        """Test avec format JSON."""
        result = parse_list_from_env('["val1","val2","val3"]', "test_field")
        assert result == ["val1", "val2", "val3"]

    def test_parse_empty_string(self):
        """Test avec chaîne vide."""
        assert parse_list_from_env("", "test_field") == []

    def test_parse_stun_servers(self):
        """Test avec des serveurs STUN (cas d'usage réel)."""
        servers = "stun:stun.l.google.com:19302,stun:stun1.l.google.com:19302"
        result = parse_list_from_env(servers, "WEBRTC_STUN_SERVERS")
        assert result == ["stun:stun.l.google.com:19302", "stun:stun1.l.google.com:19302"]

    def test_invalid_json_format(self):
        """Test avec format JSON invalide."""
        with pytest.raises(ValueError, match="Format JSON invalide pour test_field"):
            parse_list_from_env('["val1", "val2"', "test_field")

    def test_invalid_type(self):
        """Test avec type invalide."""
        with pytest.raises(ValueError, match="Valeur invalide pour test_field"):
            parse_list_from_env(123, "test_field")  # type: ignore

    def test_empty_values_filtered(self):
        """Test que les valeurs vides sont filtrées."""
        result = parse_list_from_env("val1,,val2,  ,val3", "test_field")
        assert result == ["val1", "val2", "val3"]


class TestConfigValidators:
    """Tests pour les validateurs de configuration."""

    def test_allowed_origins_validator(self):
        result = Settings.assemble_cors_origins("http://localhost:3000,https://admin.example.com")
        assert result == ["http://localhost:3000", "https://admin.example.com"]

    def test_trusted_hosts_validator(self):
        assert Settings.assemble_trusted_hosts("localhost,*.example.com") == [
            "localhost",
            "*.example.com",
        ]

    def test_stun_servers_validator(self):
        assert Settings.assemble_stun_servers('["stun:a:1"]') == ["stun:a:1"]


class TestDefaults:
    """Tests des valeurs par défaut du domaine."""

    def test_scheduled_session_windows(self):
        assert settings.SCHEDULED_SESSION_READY_MINUTES == 10
        assert settings.SCHEDULED_SESSION_EXPIRY_MINUTES == 60
        assert settings.SCHEDULED_SESSION_REMINDER_MINUTES == 5

    def test_recovery_defaults(self):
        assert settings.SESSION_RECOVERY_MAX_RETRIES == 3
        assert settings.SESSION_RECOVERY_RETRY_DELAY_SECONDS == 2.0

    def test_dashboard_limits(self):
        assert settings.DASHBOARD_ROW_LIMIT == 100
        assert settings.EMERGENCY_ROW_LIMIT == 50

    def test_api_prefix(self):
        assert settings.get_api_prefix() == "/api/v1"
        assert settings.get_api_prefix("v2") == "/api/v2"
