"""
Tests for configuration loading.
"""

import pytest

from xibo_portal.app import create_app
from xibo_portal import config as portal_config
from xibo_portal.config import get_config, load_settings_file


class TestGetConfig:

    def test_named(self):
        assert get_config('testing') is portal_config.TestingConfig
        assert get_config('production') is portal_config.ProductionConfig

    def test_unknown_falls_back(self):
        assert get_config('staging') is portal_config.DevelopmentConfig

    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv('FLASK_ENV', 'testing')
        assert get_config() is portal_config.TestingConfig


class TestSettingsFile:
    """Tests for the YAML settings overlay."""

    def test_nested_sections_flattened(self, tmp_path):
        path = tmp_path / 'settings.yaml'
        path.write_text(
            'scene:\n'
            '  fill_ratio: 0.8\n'
            '  iframe_kinds: dataset,ticker\n'
            'resolver:\n'
            '  timeout: 3\n'
            'xibo_api_url: http://cms.local/api\n'
        )

        settings = load_settings_file(str(path))

        assert settings == {
            'SCENE_FILL_RATIO': 0.8,
            'SCENE_IFRAME_KINDS': 'dataset,ticker',
            'RESOLVER_TIMEOUT': 3,
            'XIBO_API_URL': 'http://cms.local/api',
        }

    def test_empty_file(self, tmp_path):
        path = tmp_path / 'settings.yaml'
        path.write_text('')

        assert load_settings_file(str(path)) == {}

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings_file(str(tmp_path / 'missing.yaml'))

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / 'settings.yaml'
        path.write_text('- one\n- two\n')

        with pytest.raises(ValueError):
            load_settings_file(str(path))

    def test_overlay_applied_to_app(self, tmp_path, monkeypatch):
        path = tmp_path / 'settings.yaml'
        path.write_text('scene:\n  fill_ratio: 0.75\n')
        monkeypatch.setattr(portal_config.TestingConfig, 'SETTINGS_PATH', str(path))

        app = create_app('testing')

        assert app.config['SCENE_FILL_RATIO'] == 0.75
        app.extensions['resolver_executor'].shutdown(wait=False)
