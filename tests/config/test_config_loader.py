"""Tests for loading the config directory."""

import textwrap

import pytest

from vatic.config.loader import load_config, parse_job
from vatic.config.schema import VaticSettings
from vatic.errors import ConfigError


def _write(path, content):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(content), encoding="utf-8")


@pytest.fixture
def settings(tmp_path):
    return VaticSettings(config_dir=tmp_path / "config", data_dir=tmp_path / "data")


def test_loads_jobs_channels_dictionary_and_secrets(settings):
    root = settings.config_dir
    _write(root / "dictionary.toml", """
        city = "Lisbon"
        [general]
        name = "Ana"
    """)
    _write(root / "secrets.toml", """
        weather = "sk-123"
    """)
    (root / "secrets.toml").chmod(0o600)
    _write(root / "jobs" / "weather.toml", """
        name = "Morning weather"
        [job]
        interval = "0 8 * * *"
        prompt = "Weather in {% custom:city %}"
        [output]
        name = "notification"
    """)
    _write(root / "channels" / "tg.toml", """
        [channel]
        type = "telegram"
        token = "123:abc"
    """)

    loaded = load_config(settings)

    assert loaded.errors == []
    job = loaded.get_job("weather")
    assert job.name == "Morning weather"
    assert job.outputs[0].name == "notification"
    assert loaded.channels["tg"].type == "telegram"
    assert loaded.dictionary.get("city") == "Lisbon"
    assert loaded.dictionary.get("name") == "Ana"
    assert loaded.secrets.resolve("weather") == "sk-123"


def test_bad_job_is_skipped_and_reported(settings):
    root = settings.config_dir
    _write(root / "jobs" / "good.toml", """
        [job]
        prompt = "hi"
    """)
    _write(root / "jobs" / "broken.toml", """
        [job]
        interval = "nonsense"
        prompt = "hi"
    """)
    _write(root / "jobs" / "garbled.toml", "[job\n")

    loaded = load_config(settings)

    assert set(loaded.jobs) == {"good"}
    assert len(loaded.errors) == 2
    assert loaded.failed("broken") is not None
    assert loaded.failed("garbled") is not None
    assert loaded.failed("good") is None
    assert "broken.toml" in str(loaded.failed("broken"))


def test_duplicate_alias_is_rejected(settings):
    root = settings.config_dir
    _write(root / "jobs" / "a.toml", """
        alias = "same"
        [job]
        prompt = "one"
    """)
    _write(root / "jobs" / "b.toml", """
        alias = "same"
        [job]
        prompt = "two"
    """)

    loaded = load_config(settings)

    assert loaded.get_job("same").prompt == "one"
    assert "duplicate" in str(loaded.errors[0])


def test_invalid_dictionary_is_fatal(settings):
    _write(settings.config_dir / "dictionary.toml", "city = \n")
    with pytest.raises(ConfigError, match="dictionary"):
        load_config(settings)


def test_missing_config_dir_loads_nothing(settings):
    loaded = load_config(settings)
    assert loaded.jobs == {}
    assert loaded.channels == {}
    assert len(loaded.dictionary) == 0


def test_numbered_outputs_keep_their_order():
    job = parse_job(
        {
            "job": {"prompt": "p"},
            "output:3": {"name": "command", "command": "cat"},
            "output": {"name": "notification"},
            "output:2": {"name": "msmtp", "to": "me@example.org"},
        },
        default_alias="ordered",
    )
    assert [o.name for o in job.outputs] == ["notification", "msmtp", "command"]


def test_output_must_be_a_table():
    with pytest.raises(ConfigError, match="table"):
        parse_job({"job": {"prompt": "p"}, "output": "notification"}, default_alias="x")


def test_channel_without_table_is_reported(settings):
    _write(settings.config_dir / "channels" / "bad.toml", 'type = "stdin"\n')
    loaded = load_config(settings)
    assert loaded.channels == {}
    assert "missing [channel]" in str(loaded.errors[0])
