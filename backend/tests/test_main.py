"""Tests for application construction and config loading at startup."""

from unittest.mock import patch

import pytest

from btc_dashboard import main
from btc_dashboard.services.config import ConfigService


class TestCreateApp:
    """Tests for the application factory."""

    def test_import_builds_no_app(self):
        assert not hasattr(main, "app")

    def test_prebuilt_services_skip_config_file(self, services):
        with patch.object(main, "load_settings") as load_settings, \
                patch.object(main, "configure_logging") as configure_logging:
            app = main.create_app(services=services)

        load_settings.assert_not_called()
        configure_logging.assert_not_called()
        assert app.state.settings is services.settings

    def test_factory_loads_config_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("server:\n  port: 8080\nlogging:\n  level: WARNING\n")

        with patch.object(main, "config_service", ConfigService(str(path))), \
                patch.object(main, "configure_logging") as configure_logging:
            app = main.create_app()

        assert app.state.settings.port == 8080
        assert app.state.services is None
        configure_logging.assert_called_once_with(app.state.settings)

    def test_invalid_config_exits(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("server:\n  port: 0\n")

        with patch.object(main, "config_service", ConfigService(str(path))):
            with pytest.raises(SystemExit) as exc_info:
                main.load_settings()

        assert exc_info.value.code == 1
