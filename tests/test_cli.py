"""Tests for the task-supervisor command line."""

import os
import pytest

# Add src to path
import sys
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from click.testing import CliRunner

from main import cli


class TestTaskCommands:
    """Test store commands and worker callbacks."""

    @pytest.fixture
    def invoke(self, tmp_path, monkeypatch):
        """Invoke the CLI against a temporary database."""
        monkeypatch.delenv("TASK_SUPERVISOR_CONFIG", raising=False)
        monkeypatch.delenv("TASK_SUPERVISOR_DB", raising=False)
        db_path = str(tmp_path / "tasks.db")
        runner = CliRunner()

        def _invoke(*args):
            return runner.invoke(cli, ["--db", db_path, *args])

        return _invoke

    def test_create_and_show(self, invoke):
        """A created task shows as pending."""
        result = invoke("create", "t-1")
        assert result.exit_code == 0, result.output

        result = invoke("show", "t-1")
        assert result.exit_code == 0, result.output
        assert "pending" in result.output

    def test_complete(self, invoke):
        """The completion callback marks the task completed."""
        invoke("create", "t-1")

        result = invoke("complete", "t-1")
        assert result.exit_code == 0, result.output

        assert "completed" in invoke("show", "t-1").output

    def test_fail_and_reset(self, invoke):
        """A failed task keeps its reason until reset."""
        invoke("create", "t-1")

        result = invoke("fail", "t-1", "--error", "could not build")
        assert result.exit_code == 0, result.output

        output = invoke("show", "t-1").output
        assert "failed" in output
        assert "could not build" in output

        result = invoke("reset", "t-1")
        assert result.exit_code == 0, result.output

        output = invoke("show", "t-1").output
        assert "pending" in output
        assert "could not build" not in output

    def test_fail_requires_reason(self, invoke):
        """--error is mandatory."""
        invoke("create", "t-1")
        result = invoke("fail", "t-1")
        assert result.exit_code != 0

    def test_unknown_task(self, invoke):
        """Callbacks for unknown tasks exit non-zero."""
        result = invoke("complete", "missing")
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_list_with_status(self, invoke):
        """Tasks can be filtered by status."""
        invoke("create", "a")
        invoke("create", "b")
        invoke("complete", "b")

        result = invoke("list", "--status", "completed")
        assert result.exit_code == 0, result.output
        assert "b\tcompleted" in result.output
        assert "a\t" not in result.output

    def test_delete(self, invoke):
        """Deleted tasks are gone."""
        invoke("create", "t-1")
        assert invoke("delete", "t-1").exit_code == 0
        assert invoke("show", "t-1").exit_code == 1

    def test_supervise_unknown_task(self, invoke):
        """Supervising an unknown task fails without launching."""
        result = invoke("supervise", "missing")
        assert result.exit_code == 1

    def test_supervise_completed_task(self, invoke):
        """A completed task supervises successfully without a worker."""
        invoke("create", "t-1")
        invoke("complete", "t-1")

        result = invoke("supervise", "t-1")
        assert result.exit_code == 0, result.output

    def test_supervise_unreadable_database(self, tmp_path):
        """A corrupt store is reported as a CLI error."""
        db_path = tmp_path / "tasks.db"
        db_path.write_bytes(b"this is not a sqlite database" * 100)

        result = CliRunner().invoke(cli, ["--db", str(db_path), "supervise", "t-1"])

        assert result.exit_code == 1
        assert isinstance(result.exception, SystemExit)
        assert "failed to open task store" in result.output

    def test_invalid_config_file(self, invoke, tmp_path):
        """An explicit config file that does not exist is an error."""
        result = invoke("--config", str(tmp_path / "missing.yaml"), "list")
        assert result.exit_code == 1
