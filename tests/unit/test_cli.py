"""Unit tests for the typer CLI (launcher mocked)."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from pipeline_it.cli import app
from pipeline_it.config.models import JobState, LaunchInfo
from pipeline_it.errors import JobControlError

runner = CliRunner()


@pytest.fixture(autouse=True)
def _no_logging_config():
    with patch("pipeline_it.cli.configure_logging"):
        yield


@pytest.fixture
def settings_file(tmp_path: Path) -> Path:
    path = tmp_path / "settings.yaml"
    path.write_text(
        "dataflow:\n"
        "  project_id: my-proj\n"
        "  access_token: tok\n"
        "poll:\n"
        "  max_wait_seconds: 30\n"
        "  interval_seconds: 1\n"
    )
    return path


@pytest.fixture
def launcher():
    with patch("pipeline_it.cli.DataflowLauncher") as launcher_cls:
        instance = launcher_cls.return_value.__enter__.return_value
        instance.project_id = "my-proj"
        instance.region = "us-central1"
        yield instance


class TestValidate:
    def test_defaults(self):
        result = runner.invoke(app, ["validate"])
        assert result.exit_code == 0
        assert "Valid" in result.output
        assert "not configured" in result.output

    def test_with_file(self, settings_file: Path):
        result = runner.invoke(app, ["validate", "--settings", str(settings_file)])
        assert result.exit_code == 0
        assert "my-proj" in result.output

    def test_missing_file(self, tmp_path: Path):
        result = runner.invoke(app, ["validate", "--settings", str(tmp_path / "nope.yaml")])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_invalid_file(self, tmp_path: Path):
        path = tmp_path / "bad.yaml"
        path.write_text("poll:\n  interval_seconds: 0\n")
        result = runner.invoke(app, ["validate", "--settings", str(path)])
        assert result.exit_code == 1
        assert "Invalid settings" in result.output


class TestLaunch:
    def test_launch(self, settings_file: Path, launcher):
        launcher.launch.return_value = LaunchInfo(
            job_id="job-42", job_name="it-job", project_id="my-proj", region="us-central1"
        )
        result = runner.invoke(
            app,
            [
                "launch",
                "it-job",
                "gs://b/spec.json",
                "-p",
                "inputTopic=projects/p/topics/in",
                "--settings",
                str(settings_file),
            ],
        )
        assert result.exit_code == 0, result.output
        assert "job-42" in result.output
        (config,), _ = launcher.launch.call_args
        assert config.parameters == {"inputTopic": "projects/p/topics/in"}

    def test_bad_param(self, settings_file: Path, launcher):
        result = runner.invoke(
            app, ["launch", "it-job", "gs://b/s.json", "-p", "novalue", "--settings", str(settings_file)]
        )
        assert result.exit_code == 2
        launcher.launch.assert_not_called()

    def test_missing_required_parameter(self, settings_file: Path):
        result = runner.invoke(
            app,
            ["launch", "it-job", "gs://b/s.json", "--require", "outputTopic", "--settings", str(settings_file)],
        )
        assert result.exit_code == 1
        assert "outputTopic" in result.output

    def test_no_dataflow_settings(self):
        result = runner.invoke(app, ["launch", "it-job", "gs://b/s.json"])
        assert result.exit_code == 1
        assert "dataflow" in result.output


class TestStatusWaitCancel:
    def test_status(self, settings_file: Path, launcher):
        launcher.get_job_status.return_value = JobState.RUNNING
        result = runner.invoke(app, ["status", "job-42", "--settings", str(settings_file)])
        assert result.exit_code == 0
        assert "running" in result.output

    def test_wait_success(self, settings_file: Path, launcher):
        launcher.get_job_status.return_value = JobState.SUCCEEDED
        result = runner.invoke(app, ["wait", "job-42", "--settings", str(settings_file)])
        assert result.exit_code == 0, result.output
        assert "condition_met" in result.output

    def test_wait_failure_exit_code(self, settings_file: Path, launcher):
        launcher.get_job_status.return_value = JobState.FAILED
        result = runner.invoke(app, ["wait", "job-42", "--settings", str(settings_file)])
        assert result.exit_code == 1
        assert "launch_failed" in result.output

    def test_cancel(self, settings_file: Path, launcher):
        result = runner.invoke(app, ["cancel", "job-42", "--settings", str(settings_file)])
        assert result.exit_code == 0
        launcher.cancel_job.assert_called_once_with("job-42")

    def test_drain(self, settings_file: Path, launcher):
        result = runner.invoke(app, ["cancel", "job-42", "--drain", "--settings", str(settings_file)])
        assert result.exit_code == 0
        launcher.drain_job.assert_called_once_with("job-42")
        launcher.cancel_job.assert_not_called()

    def test_cancel_failure_is_reported(self, settings_file: Path, launcher):
        launcher.cancel_job.side_effect = JobControlError(
            "Request for JOB_STATE_CANCELLED on job job-42 failed: 404 Not Found"
        )
        result = runner.invoke(app, ["cancel", "job-42", "--settings", str(settings_file)])
        assert result.exit_code == 1
        assert "Cancel failed" in result.output
        assert "job-42" in result.output
        assert not isinstance(result.exception, JobControlError)
