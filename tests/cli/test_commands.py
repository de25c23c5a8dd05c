"""Tests for the vatic CLI."""

import textwrap

import pytest
from loguru import logger
from rich.console import Console
from typer.testing import CliRunner

from vatic import __version__
from vatic.cli import commands
from vatic.cli.commands import app
from vatic.errors import AgentError, JobNotFound, SandboxError


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def vatic_home(tmp_path, monkeypatch):
    config_dir = tmp_path / "config"
    (config_dir / "jobs").mkdir(parents=True)
    monkeypatch.setenv("VATIC_CONFIG_DIR", str(config_dir))
    monkeypatch.setenv("VATIC_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setattr(commands, "console", Console(width=200))
    yield config_dir
    logger.remove()


@pytest.fixture
def agent(monkeypatch, fake_agent):
    """Route every job to one scripted backend."""
    backend = fake_agent(replies=["Sunny, 18°C"])
    monkeypatch.setattr("vatic.core.runner.create_agent", lambda config, environment: backend)
    return backend


def write_job(config_dir, alias, content):
    (config_dir / "jobs" / f"{alias}.toml").write_text(textwrap.dedent(content))


def test_version(runner):
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_list_shows_jobs(runner, vatic_home):
    write_job(vatic_home, "weather", """
        name = "Morning weather"
        [job]
        interval = "0 8 * * *"
        prompt = "weather?"
    """)
    write_job(vatic_home, "echo", """
        [input]
        channel = "tg"
        trigger = "!echo"
        trigger_match = "start"
    """)

    result = runner.invoke(app, ["list"])

    assert result.exit_code == 0
    assert "weather" in result.output
    assert "0 8 * * *" in result.output
    assert "!echo" in result.output


def test_list_without_jobs(runner):
    result = runner.invoke(app, ["list"])
    assert result.exit_code == 0
    assert "No jobs configured" in result.output


def test_run_prints_result(runner, vatic_home, agent):
    (vatic_home / "dictionary.toml").write_text('city = "Lisbon"\n')
    write_job(vatic_home, "weather", """
        [job]
        prompt = "Weather in {% custom:city %}?"
    """)

    result = runner.invoke(app, ["run", "weather"])

    assert result.exit_code == 0, result.output
    assert "Sunny, 18°C" in result.output
    assert agent.prompts == ["Weather in Lisbon?"]


def test_run_with_simulated_message_strips_trigger(runner, vatic_home, agent):
    write_job(vatic_home, "echo", """
        [input]
        channel = "tg"
        trigger = "!echo"
    """)

    result = runner.invoke(app, ["run", "echo", "--message", "!echo hello there"])

    assert result.exit_code == 0, result.output
    assert agent.prompts == ["hello there"]


def test_run_unknown_job(runner):
    result = runner.invoke(app, ["run", "nope"])
    assert result.exit_code == 3
    assert "job 'nope' not found" in result.output


def test_run_job_with_config_error(runner, vatic_home):
    write_job(vatic_home, "broken", """
        [job]
        interval = "whenever"
        prompt = "x"
    """)
    result = runner.invoke(app, ["run", "broken"])
    assert result.exit_code == 2


def test_invalid_dictionary_is_a_config_error(runner, vatic_home):
    (vatic_home / "dictionary.toml").write_text("city = \n")
    result = runner.invoke(app, ["list"])
    assert result.exit_code == 2


def test_run_render_error(runner, vatic_home, agent):
    write_job(vatic_home, "weather", """
        [job]
        prompt = "{% custom:unknown %}"
    """)
    result = runner.invoke(app, ["run", "weather"])
    assert result.exit_code == 4
    assert agent.prompts == []


@pytest.mark.parametrize("error, code", [(SandboxError("podman missing"), 5), (AgentError("quota"), 6)])
def test_run_failure_exit_codes(runner, vatic_home, agent, error, code):
    agent.error = error
    write_job(vatic_home, "weather", """
        [job]
        prompt = "weather?"
    """)
    result = runner.invoke(app, ["run", "weather"])
    assert result.exit_code == code


def test_exit_code_for_job_not_found():
    assert commands.exit_code_for(JobNotFound("job 'x' not found")) == commands.EXIT_JOB_NOT_FOUND
