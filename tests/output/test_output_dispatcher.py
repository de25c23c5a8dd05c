"""Tests for output sinks and the output dispatcher."""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from vatic.bus.events import InboundMessage
from vatic.config.schema import OutputConfig
from vatic.errors import ChannelError, SandboxError
from vatic.output import sinks
from vatic.output.dispatcher import OutputDispatcher
from vatic.output.sinks import ChannelSink, build_email, create_sink, prepare_command
from vatic.sandbox.base import LaunchResult
from vatic.template.functions import RenderContext


@pytest.fixture
def run_process(monkeypatch):
    mock = AsyncMock(return_value=LaunchResult("", "", 0))
    monkeypatch.setattr(sinks, "run_process", mock)
    return mock


def ctx(result="Sunny, 18°C", message=None):
    return RenderContext(now=datetime(2024, 3, 5, 8, 0), alias="weather", result=result, message=message)


def test_build_email_strips_header_injection():
    email = build_email("ana@example.org\r\nBcc: evil@example.org", "Hi\nthere", "body")
    assert email == "To: ana@example.orgBcc: evil@example.org\nSubject: Hithere\n\nbody"


def test_prepare_command_uses_environment_variable():
    assert prepare_command("echo {% result %} >> log") == 'echo "$VATIC_RESULT" >> log'


class TestSinks:
    @pytest.mark.asyncio
    async def test_notification(self, run_process):
        await create_sink(1, OutputConfig(name="notification")).deliver("msg", "res", None)
        assert run_process.await_args.args[0] == ["notify-send", "vatic", "msg"]

    @pytest.mark.asyncio
    async def test_msmtp(self, run_process):
        sink = create_sink(1, OutputConfig(name="msmtp", to="ana@example.org"))
        await sink.deliver("Sunny", "Sunny", None)
        assert run_process.await_args.args[0] == ["msmtp", "ana@example.org"]
        assert run_process.await_args.kwargs["stdin"].startswith(
            "To: ana@example.org\nSubject: vatic notification\n\n"
        )

    @pytest.mark.asyncio
    async def test_command_gets_result_in_environment(self, run_process):
        sink = create_sink(1, OutputConfig(name="command", command="notify {% result %}"))
        await sink.deliver("rendered", "raw; rm -rf /", None)
        assert run_process.await_args.args[0] == ["sh", "-c", 'notify "$VATIC_RESULT"']
        assert run_process.await_args.kwargs["env"] == {"VATIC_RESULT": "raw; rm -rf /"}

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_an_output_error(self, run_process):
        run_process.return_value = LaunchResult("", "no mail server", 1)
        with pytest.raises(sinks.OutputError, match="no mail server"):
            await create_sink(2, OutputConfig(name="msmtp", to="a@b.c")).deliver("m", "r", None)

    @pytest.mark.asyncio
    async def test_launch_failure_is_an_output_error(self, run_process):
        run_process.side_effect = SandboxError("'notify-send' not found")
        with pytest.raises(sinks.OutputError) as info:
            await create_sink(3, OutputConfig(name="notification")).deliver("m", "r", None)
        assert info.value.index == 3

    @pytest.mark.asyncio
    async def test_channel_reply_defaults_to_sender(self):
        channels = MagicMock()
        channels.send = AsyncMock()
        inbound = InboundMessage(channel="tg", sender="42", text="weather")

        await ChannelSink(1, OutputConfig(name="channel"), channels).deliver("Sunny", "Sunny", inbound)

        sent = channels.send.await_args.args[0]
        assert (sent.channel, sent.to, sent.content) == ("tg", "42", "Sunny")

    @pytest.mark.asyncio
    async def test_channel_reply_needs_a_destination(self):
        sink = ChannelSink(1, OutputConfig(name="channel"), MagicMock())
        with pytest.raises(sinks.OutputError, match="no channel"):
            await sink.deliver("x", "x", None)

    @pytest.mark.asyncio
    async def test_channel_reply_outside_daemon(self):
        sink = ChannelSink(1, OutputConfig(name="channel", channel="tg", to="42"), None)
        with pytest.raises(sinks.OutputError, match="daemon"):
            await sink.deliver("x", "x", None)


class TestDispatcher:
    @pytest.mark.asyncio
    async def test_renders_message_template(self, make_job, run_process):
        job = make_job("weather", outputs=[{"name": "notification", "message": "{% date %}: {% result %}"}])

        report = await OutputDispatcher().dispatch(job, ctx())

        assert report.ok
        assert report.delivered == [1]
        assert run_process.await_args.args[0][-1] == "2024-03-05: Sunny, 18°C"

    @pytest.mark.asyncio
    async def test_raw_result_without_template(self, make_job, run_process):
        job = make_job("weather", outputs=[{"name": "notification"}])
        await OutputDispatcher().dispatch(job, ctx())
        assert run_process.await_args.args[0][-1] == "Sunny, 18°C"

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_rest(self, make_job, run_process):
        run_process.side_effect = [
            LaunchResult("", "boom", 1),
            LaunchResult("", "", 0),
        ]
        job = make_job(
            "weather",
            outputs=[
                {"name": "notification"},
                {"name": "channel"},
                {"name": "notification", "message": "{% message %}"},
                {"name": "command", "command": "true"},
            ],
        )

        report = await OutputDispatcher().dispatch(job, ctx())

        assert report.delivered == [4]
        assert [e.index for e in report.errors] == [1, 2, 3]
        assert "'message' is only defined" in str(report.errors[2])

    @pytest.mark.asyncio
    async def test_channel_errors_are_collected(self, make_job):
        channels = MagicMock()
        channels.send = AsyncMock(side_effect=ChannelError("tg", "no such channel", fatal=True))
        job = make_job("weather", outputs=[{"name": "channel", "channel": "tg", "to": "42"}])

        report = await OutputDispatcher(channels).dispatch(job, ctx())

        assert not report.ok
        assert "no such channel" in str(report.errors[0])
