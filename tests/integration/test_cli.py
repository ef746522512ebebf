"""Tests for the schoolsync CLI against the fake backend."""

import httpx
import pytest
from click.testing import CliRunner

from schoolsync.cli import main as cli_main
from schoolsync.client import ResourceClient


@pytest.fixture
def runner(backend, monkeypatch):
    """CliRunner whose ResourceClient talks to the fake backend."""
    monkeypatch.setenv("SCHOOLSYNC_API_URL", "http://schoolsync.test")
    monkeypatch.setenv("SCHOOLSYNC_API_TOKEN", "test-token")
    monkeypatch.setenv("SCHOOLSYNC_RETRY_INTERVAL", "0")
    monkeypatch.setattr(
        cli_main,
        "ResourceClient",
        lambda config: ResourceClient(config, transport=httpx.MockTransport(backend.handle)),
    )
    return CliRunner()


def invoke(runner, *args):
    return runner.invoke(cli_main.cli, ["--school", "s1", "--campus", "c1", *args])


@pytest.mark.integration
class TestCli:
    def test_list(self, runner):
        result = invoke(runner, "list", "academics/grades")
        assert result.exit_code == 0, result.output
        assert "Grade 7" in result.output
        assert "Total: 4" in result.output

    def test_create_duplicate_fails(self, runner):
        result = invoke(runner, "create", "designations", "-f", "name=Teacher")
        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_update(self, runner, backend):
        result = invoke(runner, "update", "designations", "d1", "-f", "name=Principal")
        assert result.exit_code == 0, result.output
        assert backend.records["designations"][0]["name"] == "Principal"

    def test_delete_requires_confirmation(self, runner, backend):
        result = runner.invoke(cli_main.cli, ["--school", "s1", "delete", "designations", "d1"], input="n\n")
        assert "Aborted" in result.output
        assert backend.records["designations"]

    def test_next_grade_and_progression(self, runner, backend):
        result = invoke(runner, "next-grade", "g7", "GRADUATE")
        assert result.exit_code == 0, result.output
        assert "Grade progression updated" in result.output

        result = invoke(runner, "progression")
        assert result.exit_code == 0, result.output
        assert "GRADUATE" in result.output

    def test_next_grade_rejects_earlier_grade(self, runner):
        result = invoke(runner, "next-grade", "g9", "g7")
        assert result.exit_code == 1
        assert "cannot follow" in result.output

    def test_missing_api_url(self, runner, monkeypatch):
        monkeypatch.delenv("SCHOOLSYNC_API_URL")
        result = invoke(runner, "list", "designations")
        assert result.exit_code == 2
        assert "SCHOOLSYNC_API_URL" in result.output

    def test_parse_fields(self):
        assert cli_main.parse_fields(("order_index=10", "name=Grade 10", "is_active=true")) == {
            "order_index": 10,
            "name": "Grade 10",
            "is_active": True,
        }
