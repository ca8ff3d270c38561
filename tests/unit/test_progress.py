"""
Unit tests for progress extraction from job logs.
"""
import pytest

from replicate_jobs.inference.schemas import Job
from replicate_jobs.jobs.progress import ProgressReading, parse_progress

TQDM_LOGS = (
    "Using seed: 42\n"
    " 20%|██        | 2/10 [00:01<00:04,  1.9it/s]\n"
    "intermediate output written\n"
    " 50%|█████     | 5/10 [00:02<00:02,  2.0it/s]\n"
)


class TestParseProgress:
    """Most recent tqdm-style reading."""

    def test_last_reading_wins(self):
        reading = parse_progress(TQDM_LOGS)

        assert reading == ProgressReading(fraction=0.5, current=5, total=10)

    def test_trailing_noise_after_bar(self):
        logs = TQDM_LOGS + "saving image\n"

        assert parse_progress(logs).current == 5

    def test_complete(self):
        reading = parse_progress("100%|██████████| 50/50 [00:10<00:00]")

        assert reading.fraction == pytest.approx(1.0)
        assert reading.total == 50

    @pytest.mark.parametrize("logs", [None, "", "no progress here\nat all"])
    def test_absent(self, logs):
        assert parse_progress(logs) is None

    def test_job_progress(self):
        job = Job(id="job1", status="processing", logs=TQDM_LOGS)

        assert job.progress() == ProgressReading(fraction=0.5, current=5, total=10)
