"""
Tests for layered configuration.
"""

import logging

import pytest

from raw_pipeline_backend.configuration import configure_logging, make_settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "LOG_LEVEL",
        "MEDIA_BUCKET",
        "IMAGEN_API_KEY",
        "IMAGEN_PROFILE_ID",
        "IMAGEN_RAW_PROFILE_ID",
        "IMAGEN_REQUEST_TIMEOUT",
        "UPLOAD_BATCH_SIZE",
    ):
        monkeypatch.delenv(name, raising=False)


class TestMakeSettings:
    def test_defaults(self):
        settings = make_settings(use_env=False)
        assert settings.orchestrator.upload_batch_size == 5
        assert settings.tables.job_key_prefix == "PROCESSING_JOB#"
        assert settings.storage.staging_prefix == "staging/"
        assert settings.editor.request_timeout is None

    def test_environment_overrides_are_typed(self, monkeypatch):
        monkeypatch.setenv("MEDIA_BUCKET", "photos")
        monkeypatch.setenv("UPLOAD_BATCH_SIZE", "8")
        monkeypatch.setenv("IMAGEN_REQUEST_TIMEOUT", "30")

        settings = make_settings()

        assert settings.storage.bucket == "photos"
        assert settings.orchestrator.upload_batch_size == 8
        assert settings.editor.request_timeout == 30.0

    def test_specific_raw_profile_beats_generic(self, monkeypatch):
        monkeypatch.setenv("IMAGEN_PROFILE_ID", "generic")
        monkeypatch.setenv("IMAGEN_RAW_PROFILE_ID", "specific")
        assert make_settings().editor.raw_profile_id == "specific"

    def test_blank_environment_values_are_ignored(self, monkeypatch):
        monkeypatch.setenv("IMAGEN_API_KEY", "   ")
        assert make_settings().editor.api_key == ""

    def test_explicit_overrides_win(self, monkeypatch):
        monkeypatch.setenv("MEDIA_BUCKET", "from-env")
        settings = make_settings({"storage": {"bucket": "explicit"}})
        assert settings.storage.bucket == "explicit"

    def test_unknown_keys_are_rejected(self):
        with pytest.raises(Exception):
            make_settings({"storage": {"not_a_setting": 1}}, use_env=False)


def test_configure_logging_sets_level():
    configure_logging("debug")
    assert logging.getLogger().level == logging.DEBUG
    configure_logging("WARNING")
    assert logging.getLogger().level == logging.WARNING
