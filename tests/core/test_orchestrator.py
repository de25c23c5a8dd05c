"""Tests for the dispatch queue, worker pool and per-job run guard."""

import asyncio
from collections import defaultdict
from unittest.mock import AsyncMock

import pytest

from vatic.bus.events import DispatchEvent, InboundMessage
from vatic.bus.queue import MessageBus
from vatic.config.dictionary import Dictionary
from vatic.core.orchestrator import Orchestrator
from vatic.core.runner import JobRunner
from vatic.errors import AgentError, JobRunError
from vatic.output import sinks
from vatic.sandbox.base import LaunchResult


class RecordingRunner:
    """Stands in for JobRunner; records overlap per alias and overall."""

    def __init__(self, delay=0.05, delays=None, fail=()):
        self.delay = delay
        self.delays = delays or {}
        self.fail = set(fail)
        self.active = defaultdict(int)
        self.max_per_alias = defaultdict(int)
        self.total = 0
        self.max_total = 0
        self.started = []
        self.finished = []
        self.cancelled = []

    async def run_job(self, job, message=None):
        alias = job.alias
        label = message.text if message else "cron"
        self.started.append((alias, label))
        self.active[alias] += 1
        self.total += 1
        self.max_per_alias[alias] = max(self.max_per_alias[alias], self.active[alias])
        self.max_total = max(self.max_total, self.total)
        try:
            await asyncio.sleep(self.delays.get(alias, self.delay))
            if alias in self.fail:
                raise JobRunError(alias, "agent", AgentError("down"))
            self.finished.append((alias, label))
        except asyncio.CancelledError:
            self.cancelled.append((alias, label))
            raise
        finally:
            self.active[alias] -= 1
            self.total -= 1


@pytest.fixture
def jobs(make_job):
    return {
        alias: make_job(alias, input={"channel": "tg", "trigger": f"!{alias}"})
        for alias in ("a", "b", "c")
    }


def event(alias, text):
    return DispatchEvent(alias=alias, source="channel", message=InboundMessage("tg", "42", text))


@pytest.mark.asyncio
async def test_one_run_per_job_in_arrival_order(jobs):
    runner = RecordingRunner()
    orchestrator = Orchestrator(jobs, runner, workers=4)
    orchestrator.start(with_cron=False)

    for i in range(4):
        assert orchestrator.submit(event("a", f"m{i}"))
    await asyncio.wait_for(orchestrator.join(), timeout=2)
    await orchestrator.shutdown()

    assert runner.max_per_alias["a"] == 1
    assert runner.finished == [("a", f"m{i}") for i in range(4)]


@pytest.mark.asyncio
async def test_different_jobs_run_in_parallel(jobs):
    runner = RecordingRunner(delay=0.1)
    orchestrator = Orchestrator(jobs, runner, workers=4)
    orchestrator.start(with_cron=False)

    for alias in ("a", "b", "c"):
        orchestrator.submit(event(alias, "go"))
    await asyncio.wait_for(orchestrator.join(), timeout=2)
    await orchestrator.shutdown()

    assert runner.max_total == 3


@pytest.mark.asyncio
async def test_worker_pool_bounds_concurrency(jobs):
    runner = RecordingRunner(delay=0.05)
    orchestrator = Orchestrator(jobs, runner, workers=2)
    orchestrator.start(with_cron=False)

    for alias in ("a", "b", "c", "a", "b", "c"):
        orchestrator.submit(event(alias, "go"))
    await asyncio.wait_for(orchestrator.join(), timeout=2)
    await orchestrator.shutdown()

    assert runner.max_total == 2
    assert len(runner.finished) == 6
    assert all(n == 1 for n in runner.max_per_alias.values())


@pytest.mark.asyncio
async def test_back_to_back_fire_while_running(jobs):
    runner = RecordingRunner(delay=0.1)
    orchestrator = Orchestrator(jobs, runner, workers=4)
    orchestrator.start(with_cron=False)

    await orchestrator.fire("a")
    await asyncio.sleep(0.02)
    assert orchestrator.is_running("a")
    await orchestrator.fire("a")
    await asyncio.wait_for(orchestrator.join(), timeout=2)
    await orchestrator.shutdown()

    assert runner.finished == [("a", "cron"), ("a", "cron")]
    assert runner.max_per_alias["a"] == 1


@pytest.mark.asyncio
async def test_failed_run_does_not_block_the_queue(jobs):
    runner = RecordingRunner(fail={"a"})
    orchestrator = Orchestrator(jobs, runner, workers=1)
    orchestrator.start(with_cron=False)

    orchestrator.submit(event("a", "1"))
    orchestrator.submit(event("a", "2"))
    orchestrator.submit(event("b", "3"))
    await asyncio.wait_for(orchestrator.join(), timeout=2)
    await orchestrator.shutdown()

    assert [s[1] for s in runner.started] == ["1", "3", "2"]
    assert runner.finished == [("b", "3")]


@pytest.mark.asyncio
async def test_rejects_unknown_jobs_and_work_before_start(jobs):
    orchestrator = Orchestrator(jobs, RecordingRunner())
    assert not orchestrator.submit(event("a", "x"))
    orchestrator.start(with_cron=False)
    assert not orchestrator.submit(event("zzz", "x"))
    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_inbound_messages_are_routed_by_trigger(jobs):
    bus = MessageBus()
    runner = RecordingRunner(delay=0)
    orchestrator = Orchestrator(jobs, runner, bus=bus)
    orchestrator.start(with_cron=False)

    await bus.publish_inbound(InboundMessage("tg", "42", "!b please"))
    await bus.publish_inbound(InboundMessage("tg", "42", "nothing matches"))
    for _ in range(20):
        await asyncio.sleep(0.01)
        if runner.finished:
            break
    await asyncio.wait_for(orchestrator.join(), timeout=2)
    await orchestrator.shutdown()

    assert runner.finished == [("b", "please")]


def test_route_counts_matches(jobs):
    orchestrator = Orchestrator(jobs, RecordingRunner())
    orchestrator._accepting = True
    assert orchestrator.route(InboundMessage("tg", "42", "!a and !b")) == 2
    assert orchestrator.route(InboundMessage("mail", "x", "!a")) == 0


@pytest.mark.asyncio
async def test_shutdown_waits_for_live_runs_and_drops_queued(jobs):
    runner = RecordingRunner(delay=0.1)
    orchestrator = Orchestrator(jobs, runner, workers=4, shutdown_grace=2)
    orchestrator.start(with_cron=False)

    orchestrator.submit(event("a", "running"))
    orchestrator.submit(event("a", "queued"))
    await asyncio.sleep(0.02)
    await orchestrator.shutdown()

    assert runner.finished == [("a", "running")]
    assert ("a", "queued") not in runner.started
    assert not orchestrator.submit(event("a", "late"))


@pytest.mark.asyncio
async def test_shutdown_cancels_runs_past_the_grace_period(jobs):
    runner = RecordingRunner(delays={"a": 10, "b": 0.05})
    orchestrator = Orchestrator(jobs, runner, workers=4, shutdown_grace=0.2)
    orchestrator.start(with_cron=False)

    orchestrator.submit(event("a", "slow"))
    orchestrator.submit(event("b", "fast"))
    await asyncio.sleep(0.02)
    await asyncio.wait_for(orchestrator.shutdown(), timeout=2)

    assert runner.finished == [("b", "fast")]
    assert runner.cancelled == [("a", "slow")]
    assert not orchestrator.is_running("a")


@pytest.mark.asyncio
async def test_second_run_sees_first_runs_memory(store, fake_agent, make_job):
    agent = fake_agent(replies=["first", "second"], delay=0.1)
    job = make_job("a", job={"prompt": "before: {% for m in memories limit:1 %}{% m %}{% endfor %}"})
    runner = JobRunner(store=store, agent_factory=lambda config, environment: agent)
    orchestrator = Orchestrator({"a": job}, runner)
    orchestrator.start(with_cron=False)

    await orchestrator.fire("a")
    orchestrator.submit(DispatchEvent(alias="a", source="channel"))
    await asyncio.wait_for(orchestrator.join(), timeout=2)
    await orchestrator.shutdown()

    assert agent.max_active == 1
    assert agent.prompts == ["before: ", "before: first"]
    assert [e.result for e in store.recent("a")] == ["second", "first"]


@pytest.mark.asyncio
async def test_stdin_weather_scenario(store, fake_agent, make_job, monkeypatch):
    notify = AsyncMock(return_value=LaunchResult("", "", 0))
    monkeypatch.setattr(sinks, "run_process", notify)
    agent = fake_agent(replies=["Sunny, 18°C"])
    job = make_job(
        "weather",
        job={"prompt": "{% message %} on {% date %}"},
        input={"channel": "stdin", "trigger": "weather"},
        outputs=[{"name": "notification", "message": "Good morning {% custom:name %}; {% result %}"}],
    )
    runner = JobRunner(
        store=store,
        dictionary=Dictionary({"name": "Ana"}),
        agent_factory=lambda config, environment: agent,
    )
    bus = MessageBus()
    orchestrator = Orchestrator({"weather": job}, runner, bus=bus)
    orchestrator.start(with_cron=False)

    await bus.publish_inbound(InboundMessage("stdin", "local", "hey weather please"))
    for _ in range(50):
        await asyncio.sleep(0.01)
        if store.last_sequence("weather"):
            break
    await asyncio.wait_for(orchestrator.join(), timeout=2)
    await orchestrator.shutdown()

    assert agent.prompts[0].startswith("hey please on ")
    assert notify.await_args.args[0][-1] == "Good morning Ana; Sunny, 18°C"
    assert store.nth_from_end("weather", 0).result == "Sunny, 18°C"
