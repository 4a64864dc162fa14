"""Tests for the priority-ordered step driver."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from site_migrate.errors import ConfirmationRequired, ConflictError, NotFoundError, StepError
from site_migrate.pipeline import (
    HttpContinuation,
    Pipeline,
    PipelineContext,
    PipelineStep,
    StatusType,
    TaskContinuation,
    get_status,
)
from site_migrate.pipeline.driver import params_key


class Recorder:
    """Builds steps that log their execution order."""

    def __init__(self):
        self.calls = []

    def step(self, name, action=None):
        async def run(params, ctx):
            self.calls.append(name)
            if action is not None:
                action(params)
            params.setdefault("visited", []).append(name)
            return params
        return run


def needs_confirmation(params):
    if not params.get("confirmed"):
        raise ConfirmationRequired({"archive": "site.wpbkp"})


@pytest.fixture
def context(migrate_config, sqlite_store):
    return PipelineContext.from_config(migrate_config, sqlite_store)


@pytest.fixture
def recorder():
    return Recorder()


def make_pipeline(context, recorder, extra=(), continuation=None):
    steps = [
        PipelineStep(30, "third", recorder.step("third")),
        PipelineStep(10, "first", recorder.step("first")),
        PipelineStep(20, "second", recorder.step("second")),
        *extra,
    ]
    return Pipeline("export", steps, context, continuation)


def test_duplicate_priorities_rejected(context, recorder):
    with pytest.raises(ValueError):
        Pipeline("export", [
            PipelineStep(10, "a", recorder.step("a")),
            PipelineStep(10, "b", recorder.step("b")),
        ], context)


def test_next_priority(context, recorder):
    pipeline = make_pipeline(context, recorder)

    assert pipeline.priorities == [10, 20, 30]
    assert pipeline.next_priority(10) == 20
    assert pipeline.next_priority(15) == 20
    assert pipeline.next_priority(30) is None


@pytest.mark.asyncio
async def test_inline_run_completes_in_priority_order(context, recorder):
    pipeline = make_pipeline(context, recorder)

    params = await pipeline.start({"label": "x"}, user_id=5, inline=True)

    assert recorder.calls == ["first", "second", "third"]
    assert params["completed"] is True
    assert await context.job_lock.current() is None
    assert await context.state.get(params_key(params["run_id"])) is None

    status = await get_status(context.state, params["run_id"])
    assert status.type == StatusType.DONE
    assert status.percent == 100

    entry = context.history.find(params["history_id"])
    assert entry["status"] == "success"
    assert entry["type"] == "export"
    assert entry["user_id"] == 5


@pytest.mark.asyncio
async def test_one_step_per_invocation(context, recorder):
    pipeline = make_pipeline(context, recorder)

    params = await pipeline.start()
    run_id = params["run_id"]

    assert recorder.calls == ["first"]
    saved = await pipeline.load(run_id)
    assert saved["priority"] == 20
    assert saved["visited"] == ["first"]
    assert (await context.job_lock.current())["id"] == params["lock_id"]

    # A continuation carrying an outdated priority is ignored.
    await pipeline.resume(run_id, priority=10)
    assert recorder.calls == ["first"]

    await pipeline.resume(run_id, priority=20)
    await pipeline.resume(run_id)
    assert recorder.calls == ["first", "second", "third"]
    assert await pipeline.load(run_id) is None
    assert await context.job_lock.current() is None


@pytest.mark.asyncio
async def test_second_run_conflicts(context, recorder):
    pipeline = make_pipeline(context, recorder)
    await pipeline.start()

    with pytest.raises(ConflictError):
        await pipeline.start()


@pytest.mark.asyncio
async def test_confirmation_gate(context, recorder):
    gate = PipelineStep(15, "confirm", recorder.step("confirm", needs_confirmation))
    pipeline = make_pipeline(context, recorder, extra=[gate])

    params = await pipeline.start(inline=True)

    assert params["requires_confirmation"] is True
    assert params["confirmation"] == {"archive": "site.wpbkp"}
    assert recorder.calls == ["first", "confirm"]
    assert params["visited"] == ["first"]
    status = await get_status(context.state, params["run_id"])
    assert status.type == StatusType.INFO
    assert status.data == {"archive": "site.wpbkp"}

    # Halted runs do not move on their own.
    await pipeline.resume(params["run_id"], inline=True)
    assert recorder.calls == ["first", "confirm"]

    params = await pipeline.confirm(params["run_id"], inline=True)

    assert params["completed"] is True
    assert recorder.calls == ["first", "confirm", "confirm", "second", "third"]
    assert await context.job_lock.current() is None


@pytest.mark.asyncio
async def test_declined_confirmation_cancels(context, recorder):
    gate = PipelineStep(15, "confirm", recorder.step("confirm", needs_confirmation))
    pipeline = make_pipeline(context, recorder, extra=[gate])
    params = await pipeline.start(inline=True)

    params = await pipeline.confirm(params["run_id"], confirmed=False)

    assert params["cancelled"] is True
    assert context.history.find(params["history_id"])["status"] == "cancelled"
    assert await context.job_lock.current() is None
    with pytest.raises(NotFoundError):
        await pipeline.confirm(params["run_id"])


@pytest.mark.asyncio
async def test_failing_step_reports_error(context, recorder):
    def fail(params):
        raise StepError("Archive failed", "disk full")

    pipeline = make_pipeline(context, recorder, extra=[PipelineStep(25, "archive", recorder.step("archive", fail))])

    params = await pipeline.start(inline=True)

    assert params["error"] == {"title": "Archive failed", "message": "disk full", "step": "archive"}
    assert "third" not in recorder.calls
    status = await get_status(context.state, params["run_id"])
    assert status.type == StatusType.ERROR
    assert status.title == "Archive failed"
    assert status.message == "disk full"
    entry = context.history.find(params["history_id"])
    assert entry["status"] == "error"
    assert entry["context"]["message"] == "disk full"
    assert await context.job_lock.current() is None
    assert await pipeline.load(params["run_id"]) is None


@pytest.mark.asyncio
async def test_unexpected_exception_gets_generic_title(context, recorder):
    def fail(params):
        raise RuntimeError("boom")

    pipeline = make_pipeline(context, recorder, extra=[PipelineStep(25, "archive", recorder.step("archive", fail))])

    params = await pipeline.start(inline=True)

    assert params["error"]["title"] == "Export failed"
    assert params["error"]["message"] == "boom"


@pytest.mark.asyncio
async def test_lost_lock_is_reacquired(context, recorder):
    pipeline = make_pipeline(context, recorder)
    params = await pipeline.start()
    first_lock = params["lock_id"]

    await context.job_lock.force_release()
    params = await pipeline.resume(params["run_id"])

    assert params["lock_id"] != first_lock
    assert (await context.job_lock.current())["id"] == params["lock_id"]


@pytest.mark.asyncio
async def test_task_continuation_runs_to_completion(context, recorder):
    continuation = TaskContinuation()
    pipeline = make_pipeline(context, recorder, continuation=continuation)

    params = await pipeline.start()
    await continuation.wait()

    assert recorder.calls == ["first", "second", "third"]
    status = await get_status(context.state, params["run_id"])
    assert status.type == StatusType.DONE


@pytest.mark.asyncio
async def test_http_continuation_posts_next_step(context, recorder):
    client = AsyncMock()
    client.post.return_value = MagicMock()
    client_factory = MagicMock()
    client_factory.return_value.__aenter__.return_value = client
    continuation = HttpContinuation("http://localhost:8000/api/v1/", api_key="secret")
    pipeline = make_pipeline(context, recorder, continuation=continuation)

    with patch("site_migrate.pipeline.driver.httpx.AsyncClient", client_factory):
        params = await pipeline.start()
        for task in list(continuation._tasks):
            await task

    client.post.assert_awaited_once_with(
        "http://localhost:8000/api/v1/migrations/export/continue",
        json={"run_id": params["run_id"], "priority": 20},
        headers={"X-API-Key": "secret"},
    )
    assert recorder.calls == ["first"]


@pytest.mark.asyncio
async def test_http_continuation_ignores_timeouts(context, recorder):
    client = AsyncMock()
    client.post.side_effect = httpx.ReadTimeout("slow")
    client_factory = MagicMock()
    client_factory.return_value.__aenter__.return_value = client
    continuation = HttpContinuation("http://localhost:8000")

    with patch("site_migrate.pipeline.driver.httpx.AsyncClient", client_factory):
        await continuation._post("import", "run", 10)

    client.post.assert_awaited_once()
