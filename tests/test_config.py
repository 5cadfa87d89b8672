"""Tests for configuration and shared models."""

from shared.config import Settings, load_yaml_config
from shared.models import ProviderSelection, Role, SendMessagePayload, Turn


class TestSettings:
    """Tests for Settings loading."""

    def test_defaults(self):
        """Provider tags map to distinct vendor backends by default."""
        settings = Settings()

        assert settings.providers.primary.backend == "openai"
        assert settings.providers.secondary.backend == "anthropic"
        assert settings.providers.tertiary.backend == "google"
        assert settings.providers.critic.streaming is False
        assert settings.providers.critic.temperature == 0

    def test_from_yaml(self, tmp_path):
        """YAML values override defaults."""
        path = tmp_path / "settings.yaml"
        path.write_text(
            "environment: production\n"
            "providers:\n"
            "  primary:\n"
            "    backend: mock\n"
            "    model: test-model\n"
            "server:\n"
            "  port: 8080\n"
        )

        settings = Settings.from_yaml(path)

        assert settings.is_production
        assert settings.providers.primary.backend == "mock"
        assert settings.providers.primary.model == "test-model"
        assert settings.server.port == 8080

    def test_missing_yaml_gives_defaults(self, tmp_path):
        assert load_yaml_config(tmp_path / "absent.yaml") == {}
        assert Settings.from_yaml(tmp_path / "absent.yaml").server.port == 3000


class TestModels:
    """Tests for wire models."""

    def test_turn_wire_format(self):
        """Turns serialize with camelCase keys and without empty fields."""
        turn = Turn(content="hi", role=Role.USER, audio_payload="abc")

        wire = turn.to_wire()

        assert set(wire) == {"id", "content", "role", "timestamp", "audioPayload"}
        assert wire["role"] == "user"

    def test_turn_ids_are_unique_and_ordered(self):
        ids = [Turn(content="x", role=Role.USER).id for _ in range(50)]

        assert len(set(ids)) == 50
        assert [int(i.split("-")[1]) for i in ids] == sorted(int(i.split("-")[1]) for i in ids)

    def test_payload_defaults(self):
        """Unknown role and provider tags fall back to defaults."""
        payload = SendMessagePayload.model_validate({
            "roomId": "r1",
            "content": "x",
            "role": "wizard",
            "provider": "vendor-x",
        })

        assert payload.role == Role.USER
        assert payload.provider == ProviderSelection.PRIMARY


class TestLogging:
    """Tests for logging helpers."""

    def test_connection_context(self):
        """The connection id is bound for the current context and then removed."""
        import structlog

        from shared.logging import bind_connection, unbind_connection

        bind_connection("conn-1")
        assert structlog.contextvars.get_contextvars()["connection_id"] == "conn-1"

        unbind_connection()
        assert "connection_id" not in structlog.contextvars.get_contextvars()
