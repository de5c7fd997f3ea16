"""Tests for gunicorn_config.py: boot-time card check and font warm-up."""

from unittest.mock import patch

import gunicorn_config
from og_image import registered_families


class TestWhenReady:
    def test_disabled_by_env(self, monkeypatch):
        monkeypatch.setenv("SMOKE_ON_BOOT", "0")
        with patch("gunicorn_config.threading.Thread") as mock_thread:
            gunicorn_config.when_ready(server=None)
        mock_thread.assert_not_called()

    def test_runs_smoke_test_against_localhost(self, monkeypatch):
        monkeypatch.setenv("SMOKE_ON_BOOT", "1")
        monkeypatch.setenv("PORT", "9123")
        monkeypatch.setattr(gunicorn_config, "SMOKE_DELAY_SECONDS", 0)
        with patch("gunicorn_config.threading.Thread") as mock_thread, \
             patch("smoke_test.run_tests", return_value=True) as mock_run:
            gunicorn_config.when_ready(server=None)
            target = mock_thread.call_args.kwargs["target"]
            target()
        mock_run.assert_called_once_with("http://127.0.0.1:9123")


class TestPostFork:
    def test_registers_fonts(self, asset_dir, monkeypatch):
        monkeypatch.setenv("OG_ASSETS_DIR", asset_dir)
        gunicorn_config.post_fork(server=None, worker=None)
        assert registered_families() == ["DejaVu Sans", "DejaVu Sans Bold"]
