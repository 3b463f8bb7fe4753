"""Tests for CLI commands"""

from unittest.mock import Mock, patch

import httpx
import pytest
import yaml
from typer.testing import CliRunner

from jobsctl.client.base import JobsAPIError
from jobsctl.client.endpoints import JobsClient
from jobsctl.main import app
from jobsctl.utils.config_manager import ConfigManager


# Test fixtures
@pytest.fixture
def runner():
    """CLI test runner"""
    return CliRunner()


def make_client(**returns):
    """Mock API client usable as a context manager"""
    client = Mock()
    client.__enter__ = Mock(return_value=client)
    client.__exit__ = Mock(return_value=None)
    for method, value in returns.items():
        getattr(client, method).return_value = value
    return client


@pytest.fixture
def temp_config(tmp_path):
    """Config manager writing to a temporary directory"""
    manager = ConfigManager(tmp_path)
    with patch("jobsctl.commands.config.config", manager):
        yield manager


class TestMainCommands:
    """Test main CLI commands"""

    def test_version(self, runner):
        """Test version command"""
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "EzSign Jobs CLI" in result.stdout
        assert "1.0.0" in result.stdout

    @patch("jobsctl.main.JobsClient")
    def test_status_success(self, mock_client_class, runner):
        """Test status command with successful connection"""
        mock_client_class.return_value = make_client(
            health_check={
                "version": "1.0.0",
                "environment": "development",
                "store": {"backend": "memory", "connected": True},
                "pools": [],
            }
        )

        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0
        assert "Connected Successfully" in result.stdout
        assert "memory" in result.stdout

    @patch("jobsctl.main.JobsClient")
    def test_status_failure(self, mock_client_class, runner):
        """Test status command with connection failure"""
        client = make_client()
        client.health_check.side_effect = JobsAPIError("Connection failed")
        mock_client_class.return_value = client

        result = runner.invoke(app, ["status"])
        assert result.exit_code == 1
        assert "Connection Failed" in result.stdout


class TestJobCommands:
    """Test job commands"""

    @patch("jobsctl.commands.jobs.JobsClient")
    def test_job_status(self, mock_client_class, runner):
        client = make_client(
            get_job={
                "id": "5f0c",
                "queue": "email",
                "type": "SEND_EMAIL",
                "status": "completed",
                "progress": 100,
                "attempts": 1,
                "maxAttempts": 3,
                "result": {"sent": True},
            }
        )
        mock_client_class.return_value = client

        result = runner.invoke(app, ["jobs", "status", "5f0c", "--queue", "email"])
        assert result.exit_code == 0
        assert "SEND_EMAIL" in result.stdout
        assert "completed" in result.stdout
        client.get_job.assert_called_once_with("5f0c", "email")

    @patch("jobsctl.commands.jobs.JobsClient")
    def test_job_status_not_found(self, mock_client_class, runner):
        client = make_client()
        client.get_job.side_effect = JobsAPIError("API Error 404: Job not found")
        mock_client_class.return_value = client

        result = runner.invoke(app, ["jobs", "status", "missing"])
        assert result.exit_code == 1
        assert "Failed to get job" in result.stdout

    @patch("jobsctl.commands.jobs.JobsClient")
    def test_metrics(self, mock_client_class, runner):
        mock_client_class.return_value = make_client(
            get_metrics={
                "queues": {"email": {"waiting": 4, "failed": 1}},
                "totals": {"waiting": 4, "failed": 1},
                "dead_letter_pending": 2,
            }
        )

        result = runner.invoke(app, ["jobs", "metrics"])
        assert result.exit_code == 0
        assert "Queue Metrics" in result.stdout
        assert "email" in result.stdout
        assert "Dead letter backlog" in result.stdout

    @patch("jobsctl.commands.jobs.JobsClient")
    def test_cleanup(self, mock_client_class, runner):
        client = make_client(trigger_cleanup={"job_id": "job-42", "type": "temp_files"})
        mock_client_class.return_value = client

        result = runner.invoke(app, ["jobs", "cleanup", "temp_files"])
        assert result.exit_code == 0
        assert "job-42" in result.stdout
        client.trigger_cleanup.assert_called_once_with("temp_files")


class TestDeadLetterCommands:
    """Test dead letter queue commands"""

    @patch("jobsctl.commands.dlq.JobsClient")
    def test_stats(self, mock_client_class, runner):
        mock_client_class.return_value = make_client(
            dlq_stats={
                "total": 3,
                "by_status": {"pending": 2, "retried": 1},
                "by_queue": {"email": 3},
            }
        )

        result = runner.invoke(app, ["dlq", "stats"])
        assert result.exit_code == 0
        assert "Dead Letter Statistics" in result.stdout

    @patch("jobsctl.commands.dlq.JobsClient")
    def test_list_empty(self, mock_client_class, runner):
        mock_client_class.return_value = make_client(dlq_list={"entries": [], "total": 0})

        result = runner.invoke(app, ["dlq", "list"])
        assert result.exit_code == 0
        assert "No dead letter entries found" in result.stdout

    @patch("jobsctl.commands.dlq.JobsClient")
    def test_list_passes_filters(self, mock_client_class, runner):
        client = make_client(
            dlq_list={
                "entries": [
                    {
                        "id": "0d9a8c1e-aaaa",
                        "source_queue": "email",
                        "job_type": "SEND_EMAIL",
                        "status": "pending",
                        "attempts_made": 3,
                        "max_attempts": 3,
                        "moved_at": "2026-01-01T00:00:00",
                        "error": "SMTP unavailable",
                    }
                ],
                "total": 1,
            }
        )
        mock_client_class.return_value = client

        result = runner.invoke(
            app, ["dlq", "list", "--queue", "email", "--status", "pending", "--limit", "5"]
        )
        assert result.exit_code == 0
        assert "0d9a8c1e" in result.stdout
        assert "Showing 1 of 1" in result.stdout
        client.dlq_list.assert_called_once_with("email", "pending", 5, 0)

    @patch("jobsctl.commands.dlq.JobsClient")
    def test_retry_single(self, mock_client_class, runner):
        client = make_client(dlq_retry={"job_id": "new-job"})
        mock_client_class.return_value = client

        result = runner.invoke(app, ["dlq", "retry", "entry-1"])
        assert result.exit_code == 0
        assert "new-job" in result.stdout
        client.dlq_retry_batch.assert_not_called()

    @patch("jobsctl.commands.dlq.JobsClient")
    def test_retry_batch(self, mock_client_class, runner):
        client = make_client(
            dlq_retry_batch={
                "results": {
                    "entry-1": {"success": True, "job_id": "job-1"},
                    "entry-2": {"success": False, "error": "Dead letter entry not found"},
                }
            }
        )
        mock_client_class.return_value = client

        result = runner.invoke(app, ["dlq", "retry", "entry-1", "entry-2"])
        assert result.exit_code == 0
        assert "job-1" in result.stdout
        assert "Dead letter entry not found" in result.stdout
        client.dlq_retry_batch.assert_called_once_with(["entry-1", "entry-2"])

    @patch("jobsctl.commands.dlq.JobsClient")
    def test_discard_requires_confirmation(self, mock_client_class, runner):
        client = make_client()
        mock_client_class.return_value = client

        result = runner.invoke(app, ["dlq", "discard", "entry-1"], input="n\n")
        assert result.exit_code == 0
        assert "Discard cancelled" in result.stdout
        client.dlq_discard_batch.assert_not_called()

    @patch("jobsctl.commands.dlq.JobsClient")
    def test_discard_with_yes(self, mock_client_class, runner):
        client = make_client(dlq_discard_batch={"results": {"entry-1": True, "entry-2": False}})
        mock_client_class.return_value = client

        result = runner.invoke(app, ["dlq", "discard", "entry-1", "entry-2", "--yes"])
        assert result.exit_code == 0
        assert "Discarded entry-1" in result.stdout
        assert "already resolved" in result.stdout

    @patch("jobsctl.commands.dlq.JobsClient")
    def test_cleanup(self, mock_client_class, runner):
        client = make_client(dlq_cleanup={"deleted": 4, "older_than_days": 7})
        mock_client_class.return_value = client

        result = runner.invoke(app, ["dlq", "cleanup", "--older-than-days", "7"])
        assert result.exit_code == 0
        assert "Deleted 4 entries" in result.stdout
        client.dlq_cleanup.assert_called_once_with(7)

    def test_cleanup_rejects_zero_days(self, runner):
        result = runner.invoke(app, ["dlq", "cleanup", "--older-than-days", "0"])
        assert result.exit_code != 0


class TestConfigCommands:
    """Test configuration commands"""

    def test_set_and_get(self, runner, temp_config):
        result = runner.invoke(app, ["config", "set", "api.base_url", "http://jobs:9000"])
        assert result.exit_code == 0
        assert temp_config.get("api.base_url") == "http://jobs:9000"

        result = runner.invoke(app, ["config", "get", "api.base_url"])
        assert result.exit_code == 0
        assert "http://jobs:9000" in result.stdout

    def test_set_rejects_bad_url(self, runner, temp_config):
        result = runner.invoke(app, ["config", "set", "api.base_url", "jobs:9000"])
        assert result.exit_code == 1
        assert not temp_config.config_file.exists()

    def test_set_numeric_timeout(self, runner, temp_config):
        assert runner.invoke(app, ["config", "set", "api.timeout", "soon"]).exit_code == 1

        runner.invoke(app, ["config", "set", "api.timeout", "5"])
        assert temp_config.get("api.timeout") == 5

    def test_get_missing_key(self, runner, temp_config):
        result = runner.invoke(app, ["config", "get", "api.nope"])
        assert result.exit_code == 1

    def test_dev_mode_sets_headers(self, runner, temp_config):
        result = runner.invoke(
            app, ["config", "dev-mode", "alice", "org-1", "--roles", "member"]
        )
        assert result.exit_code == 0

        saved = yaml.safe_load(temp_config.config_file.read_text())
        assert saved["api"]["headers"] == {
            "X-User-ID": "alice",
            "X-Org-ID": "org-1",
            "X-Roles": "member",
        }

    def test_reset(self, runner, temp_config):
        temp_config.set("display.page_size", 50)

        result = runner.invoke(app, ["config", "reset", "--yes"])
        assert result.exit_code == 0
        assert temp_config.get("display.page_size") == 20


class TestWorkerCommands:
    def test_run_rejects_unknown_queue(self, runner):
        result = runner.invoke(app, ["worker", "run", "--queue", "sms"])
        assert result.exit_code == 1
        assert "Unknown queue" in result.stdout


class TestJobsClient:
    """Test the HTTP client against a mock transport"""

    def test_unwraps_envelope_and_prefixes_version(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"ok": True, "data": {"deleted": 0}})

        transport = httpx.MockTransport(handler)
        headers = {"X-Roles": "admin"}
        with JobsClient("http://jobs.test", headers=headers, transport=transport) as client:
            assert client.dlq_cleanup(7) == {"deleted": 0}

        (request,) = seen
        assert request.url.path == "/v1/admin/dlq/cleanup"
        assert request.headers["X-Roles"] == "admin"

    def test_error_envelope_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                404, json={"ok": False, "error": {"message": "Job not found", "code": 404}}
            )

        with JobsClient("http://jobs.test", transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(JobsAPIError, match="API Error 404: Job not found"):
                client.get_job("missing")

    def test_connection_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused")

        with JobsClient("http://jobs.test", transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(JobsAPIError, match="Connection failed"):
                client.health_check()
