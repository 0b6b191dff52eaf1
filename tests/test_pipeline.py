#!/usr/bin/env python3
"""
Pipeline tests: orchestrator stages, job lifecycle, and the manager's
submit/status/result/list/delete operations on both storage backends.
"""

import sys
import json
import tempfile
import threading
from pathlib import Path

# Add project root and tests dir to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))
sys.path.insert(0, str(Path(__file__).resolve().parent))

import unittest

from mediascribe.core.constants import JobStatus, JobStage
from mediascribe.core.config import AppConfig
from mediascribe.core.job_registry import JobRegistry
from mediascribe.core.artifact_store import (
    EphemeralArtifactStore, S3ArtifactStore, create_artifact_store, job_key,
)
from mediascribe.core.orchestrator import JobOrchestrator, transcribe_progress
from mediascribe.core.job_manager import TranscriptionManager
from mediascribe.core.error_codes import CleanupServiceError
from mediascribe.core.transcribe_openai import OpenAITranscriptionService

from fakes import FakeTranscoder, FakeTranscription, FakeCleanup, FakeS3Client

BUCKET = "test-bucket"


class RecordingRegistry(JobRegistry):
    """Keeps every progress value a job passes through."""

    def __init__(self):
        super().__init__()
        self.history = []
        self.results = []

    def update(self, job_id, **fields):
        job = super().update(job_id, **fields)
        if job is not None:
            self.history.append((job.status, job.progress, job.message))
            self.results.append((job.status, job.result is not None))
        return job


class PipelineTestCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.work_dir = Path(self.tmpdir.name) / "work"
        self.config = AppConfig(
            Path(self.tmpdir.name) / "config.json",
            environ={},
            overrides={'work_dir': str(self.work_dir)},
        )

    def tearDown(self):
        self.tmpdir.cleanup()

    def assert_no_workspaces(self):
        leftovers = list(self.work_dir.iterdir()) if self.work_dir.exists() else []
        self.assertEqual(leftovers, [])


class TestOrchestrator(PipelineTestCase):
    """Run the pipeline synchronously against an ephemeral store."""

    def make(self, transcoder=None, transcription=None, cleanup=None, store=None):
        self.registry = RecordingRegistry()
        self.store = store or EphemeralArtifactStore(self.registry)
        self.transcoder = transcoder or FakeTranscoder()
        self.transcription = transcription or FakeTranscription()
        self.cleanup = cleanup or FakeCleanup()
        self.orchestrator = JobOrchestrator(self.registry, self.store, self.transcoder,
                                            self.transcription, self.cleanup, self.config)
        self.registry.create("job1", "Team Sync.mp4", "Team Sync")

    def run_job(self, data=b"fake media bytes"):
        self.orchestrator.run("job1", data, "Team Sync.mp4", "video/mp4")
        return self.registry.get("job1")

    def test_successful_run(self):
        self.make()
        job = self.run_job()
        self.assertEqual(job.status, JobStatus.COMPLETED)
        self.assertEqual(job.progress, 100)
        self.assertEqual(job.message, JobStage.DONE)
        self.assertEqual(job.result, "**Speaker 1:** text of part-000.mp3")
        self.assertEqual(self.transcoder.calls[-1], ('single_segment',))
        self.assert_no_workspaces()

    def test_video_source_message(self):
        self.make(transcoder=FakeTranscoder(has_video=True))
        self.run_job()
        messages = [m for _, _, m in self.registry.history]
        self.assertIn(JobStage.EXTRACTING, messages)
        self.assertNotIn(JobStage.COMPRESSING, messages)

    def test_audio_source_message(self):
        self.make()
        self.run_job()
        messages = [m for _, _, m in self.registry.history]
        self.assertIn(JobStage.COMPRESSING, messages)

    def test_split_transcribes_in_order(self):
        self.make(transcoder=FakeTranscoder(source_duration=2990, audio_duration=3000))
        job = self.run_job()
        self.assertEqual(job.status, JobStatus.COMPLETED)
        self.assertIn(('segment', 1395), self.transcoder.calls)
        self.assertEqual(self.transcription.calls,
                         ["part-000.mp3", "part-001.mp3", "part-002.mp3"])
        self.assertEqual(
            self.cleanup.calls[0],
            "text of part-000.mp3\n\ntext of part-001.mp3\n\ntext of part-002.mp3",
        )
        messages = [m for _, _, m in self.registry.history]
        self.assertIn(JobStage.SPLITTING, messages)
        self.assertIn("Transcribing chunk 3/3...", messages)

    def test_progress_monotonic(self):
        self.make(transcoder=FakeTranscoder(audio_duration=6000))
        self.run_job()
        progress = [p for _, p, _ in self.registry.history]
        self.assertEqual(progress, sorted(progress))
        self.assertEqual(progress[-1], 100)

    def test_analysis_failure(self):
        self.make(transcoder=FakeTranscoder(fail_probe=True))
        job = self.run_job()
        self.assertEqual(job.status, JobStatus.ERROR)
        self.assertEqual(job.progress, 100)
        self.assertIn("ffprobe failed", job.message)
        self.assertIsNone(job.result)
        self.assertEqual(self.transcription.calls, [])
        self.assert_no_workspaces()

    def test_zero_duration_audio(self):
        self.make(transcoder=FakeTranscoder(audio_duration=0))
        job = self.run_job()
        self.assertEqual(job.status, JobStatus.ERROR)
        self.assertIn("no measurable duration", job.message)

    def test_zero_segments(self):
        self.make(transcoder=FakeTranscoder(audio_duration=3000, segment_count=0))
        job = self.run_job()
        self.assertEqual(job.status, JobStatus.ERROR)
        self.assertEqual(job.message, "No segments produced")
        self.assert_no_workspaces()

    def test_segment_failure_aborts_job(self):
        self.make(transcoder=FakeTranscoder(audio_duration=3000),
                  transcription=FakeTranscription(fail_on=1))
        job = self.run_job()
        self.assertEqual(job.status, JobStatus.ERROR)
        self.assertEqual(job.progress, 100)
        self.assertIn("part-001.mp3", job.message)
        self.assertIsNone(job.result)
        # no further segments, no cleanup call
        self.assertEqual(self.transcription.calls, ["part-000.mp3", "part-001.mp3"])
        self.assertEqual(self.cleanup.calls, [])
        self.assert_no_workspaces()

    def test_cleanup_failure(self):
        self.make(cleanup=FakeCleanup(error=CleanupServiceError("Cleanup returned 500: oops")))
        job = self.run_job()
        self.assertEqual(job.status, JobStatus.ERROR)
        self.assertEqual(job.message, "Cleanup returned 500: oops")
        self.assertIsNone(job.result)

    def test_unexpected_error_recorded(self):
        self.make(cleanup=FakeCleanup(error=RuntimeError("socket closed")))
        job = self.run_job()
        self.assertEqual(job.status, JobStatus.ERROR)
        self.assertIn("socket closed", job.message)

    def test_missing_api_key_is_configuration_error(self):
        self.make(transcription=OpenAITranscriptionService(api_key=""))
        job = self.run_job()
        self.assertEqual(job.status, JobStatus.ERROR)
        self.assertIn("OPENAI_API_KEY", job.message)

    def test_unfenced_output_kept(self):
        self.make(cleanup=FakeCleanup(output="**Speaker 1:** Hello"))
        self.assertEqual(self.run_job().result, "**Speaker 1:** Hello")

    def test_result_recorded_only_on_completion(self):
        self.make(transcoder=FakeTranscoder(audio_duration=3000))
        self.run_job()
        with_result = [status for status, has_result in self.registry.results if has_result]
        self.assertTrue(with_result)
        self.assertEqual(set(with_result), {JobStatus.COMPLETED})

    def test_unreadable_segment_is_not_a_service_error(self):
        work_dir = self.work_dir

        class RemovingTranscription(FakeTranscription):
            def transcribe(self, audio_bytes, filename):
                for path in work_dir.rglob("part-001.mp3"):
                    path.unlink()
                return super().transcribe(audio_bytes, filename)

        self.make(transcoder=FakeTranscoder(audio_duration=3000),
                  transcription=RemovingTranscription())
        job = self.run_job()
        self.assertEqual(job.status, JobStatus.ERROR)
        self.assertTrue(job.message.startswith("Unexpected error"), job.message)
        self.assertNotIn("Transcription failed", job.message)
        self.assertEqual(self.transcription.calls, ["part-000.mp3"])
        self.assert_no_workspaces()

    def test_deleted_job_stops_quietly(self):
        client = FakeS3Client()
        registry = JobRegistry()
        store = S3ArtifactStore(BUCKET, client=client)

        class DeletingTranscription(FakeTranscription):
            def transcribe(self, audio_bytes, filename):
                registry.delete("job1")
                return super().transcribe(audio_bytes, filename)

        transcription = DeletingTranscription()
        orchestrator = JobOrchestrator(registry, store, FakeTranscoder(audio_duration=3000),
                                       transcription, FakeCleanup(), self.config)
        registry.create("job1", "a.mp3", "a")
        orchestrator.run("job1", b"media", "a.mp3", None)

        self.assertIsNone(registry.get("job1"))
        self.assertEqual(transcription.calls, ["part-000.mp3"])
        self.assertEqual(client.keys(BUCKET), [])
        self.assert_no_workspaces()

    def test_transcribe_progress(self):
        self.assertEqual(transcribe_progress(0, 3), 10)
        self.assertEqual(transcribe_progress(1, 2), 40)
        self.assertEqual(transcribe_progress(0, 0), 10)


class TestDurableArtifacts(PipelineTestCase):
    """Artifacts written to the S3 layout during a run."""

    def test_artifact_layout(self):
        client = FakeS3Client()
        registry = JobRegistry()
        store = S3ArtifactStore(BUCKET, client=client)
        orchestrator = JobOrchestrator(registry, store, FakeTranscoder(audio_duration=3000),
                                       FakeTranscription(), FakeCleanup(), self.config)
        registry.create("job1", "Team Sync.mp4", "Team Sync")
        orchestrator.run("job1", b"media", "Team Sync.mp4", "video/mp4")

        self.assertEqual(client.keys(BUCKET), [
            "jobs/job1/cleaned.md",
            "jobs/job1/meta.json",
            "jobs/job1/original/Team Sync.mp4",
            "jobs/job1/raw.txt",
            "jobs/job1/segments/part-000.mp3",
            "jobs/job1/segments/part-001.mp3",
            "jobs/job1/segments/part-002.mp3",
        ])
        self.assertEqual(client.objects[(BUCKET, "jobs/job1/original/Team Sync.mp4")], b"media")
        self.assertEqual(client.content_types[(BUCKET, "jobs/job1/original/Team Sync.mp4")], "video/mp4")
        meta = json.loads(client.objects[(BUCKET, "jobs/job1/meta.json")])
        self.assertEqual(meta['displayName'], "Team Sync")
        self.assertEqual(meta['originalFilename'], "Team Sync.mp4")
        self.assertIsNotNone(meta['createdAt'])
        cleaned = client.objects[(BUCKET, "jobs/job1/cleaned.md")].decode()
        self.assertFalse(cleaned.startswith("```"))

    def test_failed_job_has_no_cleaned_markdown(self):
        client = FakeS3Client()
        registry = JobRegistry()
        store = S3ArtifactStore(BUCKET, client=client)
        orchestrator = JobOrchestrator(registry, store, FakeTranscoder(audio_duration=3000),
                                       FakeTranscription(fail_on=0), FakeCleanup(), self.config)
        registry.create("job1", "a.mp3", "a")
        orchestrator.run("job1", b"media", "a.mp3", None)
        self.assertNotIn((BUCKET, job_key("job1", "cleaned.md")), client.objects)
        self.assertNotIn((BUCKET, job_key("job1", "raw.txt")), client.objects)


class TestManagerEphemeral(PipelineTestCase):
    """submit/status/result/list/delete without durable storage."""

    def make_manager(self, **kwargs):
        params = dict(transcoder=FakeTranscoder(), transcription=FakeTranscription(),
                      cleanup_service=FakeCleanup())
        params.update(kwargs)
        return TranscriptionManager(self.config, **params)

    def test_store_selection(self):
        manager = self.make_manager()
        self.assertIsInstance(manager.store, EphemeralArtifactStore)
        self.assertFalse(manager.store.durable)

    def test_new_job_is_queued(self):
        gate = threading.Event()
        manager = self.make_manager(transcription=FakeTranscription(gate=gate))
        job_id = manager.submit(b"data", "Weekly Call.m4a", "audio/mp4")
        try:
            status = manager.status(job_id)
            self.assertIn(status['status'], (JobStatus.QUEUED, JobStatus.PROCESSING))
            self.assertEqual(status['display_name'], "Weekly Call")
            self.assertIsNone(manager.result(job_id))
        finally:
            gate.set()
            self.assertTrue(manager.wait(job_id, timeout=10))

    def test_full_lifecycle(self):
        manager = self.make_manager()
        job_id = manager.submit(b"data", "Weekly Call.m4a", "audio/mp4")
        self.assertTrue(manager.wait(job_id, timeout=10))

        status = manager.status(job_id)
        self.assertEqual(status['status'], JobStatus.COMPLETED)
        self.assertEqual(status['progress'], 100)
        self.assertTrue(status['result_available'])
        self.assertEqual(manager.result(job_id), "**Speaker 1:** text of part-000.mp3")

        listed = manager.list()
        self.assertEqual([j['job_id'] for j in listed], [job_id])
        self.assertEqual(listed[0]['display_name'], "Weekly Call")

        self.assertEqual(manager.delete(job_id), {'ok': True, 'deleted': 1})
        self.assertIsNone(manager.status(job_id))
        self.assertIsNone(manager.result(job_id))
        self.assertEqual(manager.list(), [])
        self.assert_no_workspaces()

    def test_failed_job_snapshot(self):
        manager = self.make_manager(transcoder=FakeTranscoder(fail_probe=True))
        job_id = manager.submit(b"data", "broken.mp4")
        self.assertTrue(manager.wait(job_id, timeout=10))
        status = manager.status(job_id)
        self.assertEqual(status['status'], JobStatus.ERROR)
        self.assertEqual(status['progress'], 100)
        self.assertIn("ffprobe failed", status['message'])
        self.assertFalse(status['result_available'])
        self.assertIsNone(manager.result(job_id))

    def test_jobs_are_isolated(self):
        manager = self.make_manager()
        ok_id = manager.submit(b"data", "ok.mp3")
        manager.wait(ok_id, timeout=10)
        manager.orchestrator.transcoder = FakeTranscoder(fail_probe=True)
        bad_id = manager.submit(b"data", "bad.mp3")
        manager.wait(bad_id, timeout=10)
        self.assertEqual(manager.status(ok_id)['status'], JobStatus.COMPLETED)
        self.assertEqual(manager.status(bad_id)['status'], JobStatus.ERROR)
        self.assertEqual([j['job_id'] for j in manager.list()], [bad_id, ok_id])

    def test_shared_work_dir_keeps_running_workspace(self):
        gate = threading.Event()
        transcription = FakeTranscription(gate=gate)
        first = self.make_manager(transcoder=FakeTranscoder(audio_duration=3000),
                                  transcription=transcription)
        job_id = first.submit(b"data", "long.mp3")
        try:
            self.assertTrue(transcription.entered.wait(5))
            workspaces = list(self.work_dir.iterdir())
            self.assertEqual(len(workspaces), 1)

            # a second process-level manager on the same work_dir, e.g. `--status`
            self.make_manager()
            self.assertTrue(workspaces[0].exists())
        finally:
            gate.set()
        self.assertTrue(first.wait(job_id, timeout=10))

        status = first.status(job_id)
        self.assertEqual(status['status'], JobStatus.COMPLETED, status['message'])
        self.assertEqual(transcription.calls, ["part-000.mp3", "part-001.mp3", "part-002.mp3"])
        self.assert_no_workspaces()

    def test_result_hidden_until_completed(self):
        gate = threading.Event()
        transcription = FakeTranscription(gate=gate)
        manager = self.make_manager(transcription=transcription)
        job_id = manager.submit(b"data", "clip.mp3")
        try:
            self.assertTrue(transcription.entered.wait(5))
            self.assertIsNone(manager.result(job_id))
            self.assertFalse(manager.status(job_id)['result_available'])
        finally:
            gate.set()
        self.assertTrue(manager.wait(job_id, timeout=10))
        self.assertEqual(manager.result(job_id), "**Speaker 1:** text of part-000.mp3")

    def test_delete_while_running(self):
        gate = threading.Event()
        transcription = FakeTranscription(gate=gate)
        manager = self.make_manager(transcoder=FakeTranscoder(audio_duration=3000),
                                    transcription=transcription)
        job_id = manager.submit(b"data", "long.mp3")
        try:
            self.assertTrue(transcription.entered.wait(5))
            self.assertTrue(manager.delete(job_id)['ok'])
        finally:
            gate.set()
        self.assertTrue(manager.wait(job_id, timeout=10))

        self.assertIsNone(manager.status(job_id))
        self.assertIsNone(manager.result(job_id))
        self.assertEqual(manager.list(), [])
        self.assertEqual(transcription.calls, ["part-000.mp3"])
        self.assert_no_workspaces()

    def test_unknown_job(self):
        manager = self.make_manager()
        self.assertIsNone(manager.status("nope"))
        self.assertIsNone(manager.result("nope"))
        self.assertEqual(manager.delete("nope"), {'ok': True, 'deleted': 0})

    def test_unique_ids(self):
        manager = self.make_manager()
        ids = {manager.submit(b"d", f"{i}.mp3") for i in range(10)}
        for job_id in ids:
            manager.wait(job_id, timeout=10)
        self.assertEqual(len(ids), 10)

    def test_stale_workspaces_swept_on_start(self):
        stale = self.work_dir / "transcribe-deadbeef-x1"
        stale.mkdir(parents=True)
        self.make_manager()
        self.assertFalse(stale.exists())


class TestManagerDurable(PipelineTestCase):
    """Durable storage: recovery after restart and prefix deletion."""

    def setUp(self):
        super().setUp()
        self.client = FakeS3Client()
        self.config = AppConfig(
            Path(self.tmpdir.name) / "config.json",
            environ={'S3_BUCKET': BUCKET},
            overrides={'work_dir': str(self.work_dir)},
        )

    def make_manager(self, **kwargs):
        registry = JobRegistry()
        store = create_artifact_store(self.config, registry, s3_client=self.client)
        params = dict(transcoder=FakeTranscoder(audio_duration=3000),
                      transcription=FakeTranscription(), cleanup_service=FakeCleanup())
        params.update(kwargs)
        return TranscriptionManager(self.config, registry=registry, store=store, **params)

    def test_store_selection(self):
        manager = self.make_manager()
        self.assertIsInstance(manager.store, S3ArtifactStore)
        self.assertTrue(manager.store.durable)

    def test_status_recovered_after_restart(self):
        first = self.make_manager()
        job_id = first.submit(b"data", "Board Meeting.mov", "video/quicktime")
        self.assertTrue(first.wait(job_id, timeout=10))
        expected = first.result(job_id)

        restarted = self.make_manager()
        status = restarted.status(job_id)
        self.assertEqual(status['status'], JobStatus.COMPLETED)
        self.assertEqual(status['progress'], 100)
        self.assertEqual(status['display_name'], "Board Meeting")
        self.assertEqual(restarted.result(job_id), expected)

        listed = restarted.list()
        self.assertEqual(listed[0]['job_id'], job_id)
        self.assertEqual(listed[0]['display_name'], "Board Meeting")

    def test_corrupt_metadata_falls_back_to_id(self):
        self.client.put_object(Bucket=BUCKET, Key="jobs/orphan/meta.json", Body=b"{broken")
        self.client.put_object(Bucket=BUCKET, Key="jobs/nometa/raw.txt", Body=b"hi")
        manager = self.make_manager()
        names = {j['job_id']: j['display_name'] for j in manager.list()}
        self.assertEqual(names, {'orphan': 'orphan', 'nometa': 'nometa'})

    def test_incomplete_job_not_recovered(self):
        self.client.put_object(Bucket=BUCKET, Key="jobs/half/raw.txt", Body=b"hi")
        manager = self.make_manager()
        self.assertIsNone(manager.status("half"))
        self.assertIsNone(manager.result("half"))

    def test_list_orders_newest_first(self):
        for job_id, created in [("a", "2024-01-01T00:00:00+00:00"),
                                ("b", "2024-03-01T00:00:00+00:00"),
                                ("c", None)]:
            meta = {'jobId': job_id, 'displayName': job_id.upper(), 'createdAt': created}
            self.client.put_object(Bucket=BUCKET, Key=f"jobs/{job_id}/meta.json",
                                   Body=json.dumps(meta).encode())
        manager = self.make_manager()
        self.assertEqual([j['job_id'] for j in manager.list()], ["b", "a", "c"])

    def test_delete_removes_prefix(self):
        manager = self.make_manager()
        job_id = manager.submit(b"data", "x.mp3")
        self.assertTrue(manager.wait(job_id, timeout=10))
        other = manager.submit(b"data", "y.mp3")
        self.assertTrue(manager.wait(other, timeout=10))

        result = manager.delete(job_id)
        self.assertTrue(result['ok'])
        self.assertEqual(result['deleted'], 7)
        self.assertFalse(any(k.startswith(f"jobs/{job_id}/") for k in self.client.keys(BUCKET)))
        self.assertTrue(any(k.startswith(f"jobs/{other}/") for k in self.client.keys(BUCKET)))
        self.assertIsNone(manager.status(job_id))
        self.assertNotIn(job_id, [j['job_id'] for j in manager.list()])

        # idempotent
        self.assertEqual(manager.delete(job_id)['deleted'], 0)

    def test_delete_while_running(self):
        gate = threading.Event()
        transcription = FakeTranscription(gate=gate)
        manager = self.make_manager(transcription=transcription)
        job_id = manager.submit(b"data", "long.mp3")
        try:
            self.assertTrue(transcription.entered.wait(5))
            self.assertTrue(manager.delete(job_id)['ok'])
        finally:
            gate.set()
        self.assertTrue(manager.wait(job_id, timeout=10))

        self.assertIsNone(manager.status(job_id))
        self.assertIsNone(manager.result(job_id))
        self.assertNotIn(job_id, [j['job_id'] for j in manager.list()])
        self.assertEqual([k for k in self.client.keys(BUCKET) if k.startswith(f"jobs/{job_id}/")], [])

    def test_stored_markdown_hidden_while_processing(self):
        manager = self.make_manager()
        manager.registry.create("j1", "a.mp3", "a")
        manager.registry.update("j1", status=JobStatus.PROCESSING, progress=85)
        manager.store.put("j1", "cleaned.md", "# Draft")
        self.assertIsNone(manager.result("j1"))
        self.assertEqual(manager.status("j1")['status'], JobStatus.PROCESSING)

        manager.registry.update("j1", status=JobStatus.COMPLETED, progress=100, result="# Final")
        self.assertEqual(manager.result("j1"), "# Final")


if __name__ == "__main__":
    unittest.main()
