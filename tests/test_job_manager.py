"""
Tests for JobManager: job registration, dispatch rules and settings updates.
"""

from unittest.mock import MagicMock

import pytest

from raw_pipeline_backend.errors import InvalidJobStateError, JobNotFoundError
from raw_pipeline_backend.models import (
    CreateJobRequest,
    JobStatus,
    PollSummary,
    ProcessingSettings,
    SettingsUpdate,
)
from raw_pipeline_backend.job_manager import JobManager


@pytest.fixture
def orchestrator():
    return MagicMock()


@pytest.fixture
def make_manager(job_store, settings_store, storage, orchestrator):
    created = []

    def factory(mode="auto", profile_id=""):
        settings_store.settings = ProcessingSettings(processing_mode=mode, profile_id=profile_id)
        manager = JobManager(
            jobs=job_store,
            settings_store=settings_store,
            orchestrator_factory=lambda settings: orchestrator,
            poller_factory=lambda: MagicMock(run=MagicMock(return_value=PollSummary(seen=2, advanced=1))),
            storage=storage,
            presign_expiry=600,
        )
        created.append(manager)
        return manager

    yield factory
    for manager in created:
        manager.shutdown()


def _request(**overrides):
    payload = {"galleryId": "gal-1", "rawKeys": ["staging/gal-1/IMG_0001.CR3"]}
    payload.update(overrides)
    return CreateJobRequest.model_validate(payload)


class TestCreateJob:
    def test_auto_mode_dispatches_queued_job(self, make_manager, job_store, orchestrator):
        manager = make_manager("auto")

        job = manager.create_job(_request(profileId="custom"))
        manager.shutdown()

        assert job.status == JobStatus.QUEUED
        assert job_store.status_of(job.job_id) == "queued"
        event = orchestrator.run.call_args.args[0]
        assert event.job_id == job.job_id
        assert event.gallery_id == "gal-1"
        assert event.raw_keys == ["staging/gal-1/IMG_0001.CR3"]
        assert event.profile_id == "custom"

    def test_manual_mode_leaves_job_queued(self, make_manager, job_store, orchestrator):
        manager = make_manager("manual")

        job = manager.create_job(_request())
        manager.shutdown()

        assert job_store.status_of(job.job_id) == "queued"
        orchestrator.run.assert_not_called()

    def test_blank_keys_are_rejected(self):
        with pytest.raises(ValueError):
            _request(rawKeys=["  "])

    def test_empty_key_list_is_rejected(self):
        with pytest.raises(ValueError):
            _request(rawKeys=[])


class TestStartAndRetry:
    def test_start_queued_job(self, make_manager, job_store, orchestrator):
        job_store.add(job_id="j1", gallery_id="g", raw_keys=["staging/a.CR3"], status="queued")
        manager = make_manager("manual")

        manager.start_job("j1").result(timeout=5)

        orchestrator.run.assert_called_once()

    def test_start_rejects_non_queued(self, make_manager, job_store):
        job_store.add(job_id="j1", raw_keys=["staging/a.CR3"], status="processing")
        with pytest.raises(InvalidJobStateError):
            make_manager().start_job("j1")

    def test_retry_failed_job_reuses_keys(self, make_manager, job_store, orchestrator):
        job_store.add(job_id="j1", gallery_id="g", raw_keys=["staging/a.CR3", "staging/b.CR3"], status="failed")
        manager = make_manager()

        manager.retry_job("j1").result(timeout=5)

        event = orchestrator.run.call_args.args[0]
        assert event.raw_keys == ["staging/a.CR3", "staging/b.CR3"]

    def test_retry_rejects_complete_job(self, make_manager, job_store):
        job_store.add(job_id="j1", raw_keys=["staging/a.CR3"], status="complete")
        with pytest.raises(InvalidJobStateError):
            make_manager().retry_job("j1")

    def test_unknown_job(self, make_manager):
        with pytest.raises(JobNotFoundError):
            make_manager().get_job("missing")


class TestReads:
    def test_result_urls_only_for_complete_jobs(self, make_manager, job_store):
        manager = make_manager()
        done = job_store.add(job_id="done", raw_keys=["s/a"], status="complete", result_keys=["finished/g/a.jpg"])
        busy = job_store.add(job_id="busy", raw_keys=["s/a"], status="exporting")

        assert manager.result_urls(done) == ["https://media.example.com/finished/g/a.jpg?expires=600"]
        assert manager.result_urls(busy) == []

    def test_run_poller_returns_summary(self, make_manager):
        summary = make_manager().run_poller()
        assert summary.seen == 2
        assert summary.advanced == 1

    def test_update_settings_merges(self, make_manager, settings_store):
        manager = make_manager("auto", profile_id="keep-me")

        updated = manager.update_settings(SettingsUpdate(processingMode="manual"))

        assert updated.processing_mode == "manual"
        assert updated.profile_id == "keep-me"
        assert settings_store.settings.processing_mode == "manual"
