"""Priority-ordered step driver with checkpointed params and self-continuation."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set

import httpx

from .._utils import logger, generate_token
from ..errors import ConfirmationRequired, NotFoundError, StepError
from .context import PipelineContext

StepFunc = Callable[[Dict[str, Any], PipelineContext], Awaitable[Dict[str, Any]]]


@dataclass(frozen=True)
class PipelineStep:
    priority: int
    name: str
    run: StepFunc


def params_key(run_id: str) -> str:
    return f"params:{run_id}"


def _history_context(kind: str, params: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "mode": kind,
        "file": params.get("archive"),
        "archive_path": params.get("archive_path") if kind == "export" else None,
        "action": params.get("action"),
        "snapshot_id": params.get("snapshot_id"),
        "snapshot_label": params.get("snapshot_label"),
    }


class Continuation(ABC):
    """Schedules the next step of a run without blocking the caller."""

    @abstractmethod
    async def schedule(self, pipeline: "Pipeline", params: Dict[str, Any]) -> None:
        pass


class TaskContinuation(Continuation):
    """Resume the run from its checkpoint in a background asyncio task."""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    async def schedule(self, pipeline: "Pipeline", params: Dict[str, Any]) -> None:
        task = asyncio.create_task(pipeline.resume(params["run_id"], params["priority"]))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def wait(self) -> None:
        """Wait until every scheduled step (and the steps they schedule) finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class HttpContinuation(Continuation):
    """POST to the continue endpoint so a fresh request runs the next step."""

    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout: float = 2.0):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._tasks: Set[asyncio.Task] = set()

    async def schedule(self, pipeline: "Pipeline", params: Dict[str, Any]) -> None:
        task = asyncio.create_task(self._post(pipeline.kind, params["run_id"], params["priority"]))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _post(self, kind: str, run_id: str, priority: int) -> None:
        url = f"{self.base_url}/migrations/{kind}/continue"
        headers = {"X-API-Key": self.api_key} if self.api_key else {}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json={"run_id": run_id, "priority": priority}, headers=headers)
                response.raise_for_status()
        except httpx.TimeoutException:
            logger.debug(f"Continuation request for {run_id} sent, not waiting for the step")
        except httpx.HTTPError as e:
            logger.error(f"Continuation request for {run_id} failed: {e}")


class Pipeline:
    """Run the steps of one export or import in strictly increasing priority.

    Every invocation executes exactly one step, persists the params under
    ``params:<run_id>`` and hands off to the continuation, so a run survives
    request time limits and process restarts. ``inline=True`` drives the
    steps in the calling coroutine instead.
    """

    def __init__(
        self,
        kind: str,
        steps: Sequence[PipelineStep],
        context: PipelineContext,
        continuation: Optional[Continuation] = None,
    ):
        """Initialize pipeline.

        Args:
            kind: ``export`` or ``import``; also the JobLock context
            steps: Steps with unique priorities
            context: Shared collaborators
            continuation: Scheduler for the next step; None requires ``inline`` runs
        """
        priorities = [step.priority for step in steps]
        if len(set(priorities)) != len(priorities):
            raise ValueError(f"Duplicate step priorities in {kind} pipeline")
        self.kind = kind
        self.steps: List[PipelineStep] = sorted(steps, key=lambda step: step.priority)
        self._by_priority = {step.priority: step for step in self.steps}
        self.context = context
        self.continuation = continuation
        self._running: Dict[str, asyncio.Lock] = {}

    @property
    def priorities(self) -> List[int]:
        return [step.priority for step in self.steps]

    def next_priority(self, priority: int) -> Optional[int]:
        for step in self.steps:
            if step.priority > priority:
                return step.priority
        return None

    def _percent(self, priority: int) -> int:
        index = self.priorities.index(priority)
        return int(index * 100 / len(self.steps))

    async def load(self, run_id: str) -> Optional[Dict[str, Any]]:
        return await self.context.state.get(params_key(run_id))

    async def save(self, params: Dict[str, Any]) -> None:
        await self.context.state.set(params_key(params["run_id"]), params, ttl=self.context.config.pipeline.params_ttl)

    async def start(self, params: Optional[Dict[str, Any]] = None, user_id: Optional[Any] = None,
                    inline: bool = False) -> Dict[str, Any]:
        """Acquire the job lock, open a history entry and run the first step.

        Raises:
            ConflictError: another export or import holds the lock
        """
        params = dict(params or {})
        ctx = self.context
        lock_id = await ctx.job_lock.acquire(self.kind, user_id=user_id)
        params.update(
            kind=self.kind,
            run_id=generate_token(20),
            lock_id=lock_id,
            priority=self.steps[0].priority,
            completed=False,
        )
        try:
            params["history_id"] = ctx.history.start(self.kind, _history_context(self.kind, params), user_id)
        except Exception:
            await ctx.job_lock.release(lock_id)
            raise

        logger.info(f"Started {self.kind} run {params['run_id']}")
        await ctx.status(params).info(f"{self.kind.capitalize()} started")
        return await self.run(params, inline=inline)

    async def resume(self, run_id: str, priority: Optional[int] = None, inline: bool = False) -> Optional[Dict[str, Any]]:
        """Continue a run from its checkpoint.

        A priority that no longer matches the checkpoint marks a stale
        continuation and is ignored.
        """
        params = await self.load(run_id)
        if params is None:
            logger.warning(f"No checkpoint for run {run_id}")
            return None
        if priority is not None and params.get("priority") != priority:
            logger.debug(f"Ignoring stale continuation for {run_id} at priority {priority}")
            return params
        if params.get("requires_confirmation") or params.get("completed"):
            return params
        return await self.run(params, inline=inline)

    async def confirm(self, run_id: str, confirmed: bool = True, inline: bool = False) -> Dict[str, Any]:
        """Answer the confirmation gate of a halted run."""
        params = await self.load(run_id)
        if params is None:
            raise NotFoundError(f"No pending run {run_id}")
        if not params.get("requires_confirmation"):
            return params

        if not confirmed:
            params["cancelled"] = True
            await self._close(params, "cancelled", {"message": "Cancelled before confirmation."})
            await self.context.status(params).info(f"{self.kind.capitalize()} cancelled")
            return params

        params["confirmed"] = True
        params["requires_confirmation"] = False
        return await self.run(params, inline=inline)

    async def run(self, params: Dict[str, Any], inline: bool = False) -> Dict[str, Any]:
        run_id = params["run_id"]
        guard = self._running.setdefault(run_id, asyncio.Lock())
        if guard.locked():
            logger.debug(f"Run {run_id} is already executing a step")
            return params

        async with guard:
            try:
                while True:
                    priority = params.get("priority")
                    params = await self._run_step(params, hand_off=not inline)
                    if (
                        not inline
                        or params.get("completed")
                        or params.get("requires_confirmation")
                        or params.get("error")
                        or params.get("priority") == priority
                    ):
                        return params
            finally:
                self._running.pop(run_id, None)

    async def _run_step(self, params: Dict[str, Any], hand_off: bool) -> Dict[str, Any]:
        step = self._by_priority.get(params.get("priority"))
        if step is None or params.get("completed"):
            return params

        ctx = self.context
        status = ctx.status(params)
        try:
            await self._ensure_lock(params)
            await status.progress(self._percent(step.priority), step.name)
            logger.info(f"[{params['run_id']}] {self.kind} step {step.priority}: {step.name}")
            params = await step.run(params, ctx)
        except ConfirmationRequired as signal:
            params["requires_confirmation"] = True
            params["confirmation"] = signal.summary
            await self.save(params)
            await status.info(str(signal), signal.summary)
            return params
        except Exception as e:
            return await self._fail(params, step, e)

        ctx.history.update_progress(params["history_id"], self._percent(step.priority), step.name)
        next_priority = self.next_priority(step.priority)
        if next_priority is None or params.get("completed"):
            params["completed"] = True
            return await self._finish(params)

        params["priority"] = next_priority
        await self.save(params)
        if hand_off and self.continuation is not None:
            await self.continuation.schedule(self, params)
        return params

    async def _ensure_lock(self, params: Dict[str, Any]) -> None:
        lock = self.context.job_lock
        lock_id = params.get("lock_id")
        if lock_id and await lock.touch(lock_id):
            return
        logger.warning(f"Job lock of run {params['run_id']} expired, reacquiring")
        params["lock_id"] = await lock.acquire(self.kind)

    async def _close(self, params: Dict[str, Any], status: str, context: Dict[str, Any]) -> None:
        ctx = self.context
        if params.get("lock_id"):
            await ctx.job_lock.release(params["lock_id"])
        ctx.history.finish(params["history_id"], status, {**_history_context(self.kind, params), **context})
        await ctx.state.delete(params_key(params["run_id"]))

    async def _finish(self, params: Dict[str, Any]) -> Dict[str, Any]:
        await self._close(params, "success", {})
        await self.context.status(params).done(
            f"{self.kind.capitalize()} completed",
            params.get("result") or {},
        )
        logger.info(f"Finished {self.kind} run {params['run_id']}")
        return params

    async def _fail(self, params: Dict[str, Any], step: PipelineStep, error: Exception) -> Dict[str, Any]:
        if isinstance(error, StepError):
            title, message = error.title, error.message
        else:
            title, message = f"{self.kind.capitalize()} failed", str(error) or error.__class__.__name__

        logger.error(f"[{params['run_id']}] step {step.priority} ({step.name}) failed: {message}")
        params["error"] = {"title": title, "message": message, "step": step.name}
        await self._close(params, "error", {"message": message})
        await self.context.status(params).error(title, message)
        return params
