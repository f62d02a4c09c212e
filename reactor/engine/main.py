from __future__ import annotations
import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Final, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..exceptions import ActionEffectFailure, ConnectionLost
from ..models import Event
from ..protocols import Action, BusSession

logger = logging.getLogger(__name__)
_MAX_WORKERS: Final = 1024


class OverflowPolicy(str, Enum):
    BLOCK = 'block'
    DROP = 'drop'


class ReactorState(str, Enum):
    UNCONNECTED = 'unconnected'
    CONSUMING = 'consuming'
    TERMINATED = 'terminated'


class DispatchSettings(BaseModel):
    workers: int = Field(default=8, ge=1, le=_MAX_WORKERS, description='Number of concurrent action effects')
    queue_size: int = Field(default=256, ge=1, description='Work items buffered before the overflow policy applies')
    overflow: OverflowPolicy = Field(default=OverflowPolicy.BLOCK, description="'block' the receive loop or 'drop' the work item")
    effect_timeout: Optional[float] = Field(default=300.0, gt=0, description='Seconds before an action effect is cancelled; null disables')
    keepalive_interval: float = Field(default=5.0, gt=0, description='Seconds between bus keepalives while a blocked dispatch waits for queue space')

    model_config = ConfigDict(extra='forbid')


@dataclass(slots=True)
class _WorkItem:
    action: Action
    event: Event


class Reactor:
    def __init__(self, session: BusSession, actions: Optional[Iterable[Action]]=None, *, settings: Optional[DispatchSettings]=None) -> None:
        self.session = session
        self.actions: List[Action] = list(actions) if actions else []
        self.settings = settings or DispatchSettings()
        self.state = ReactorState.UNCONNECTED
        self.dropped = 0
        self._queue: Optional[asyncio.Queue[_WorkItem]] = None
        self._workers: List[asyncio.Task] = []
        # pika's blocking connection must only ever be touched from one thread
        self._io = ThreadPoolExecutor(max_workers=1, thread_name_prefix='reactor-bus')
        logger.info('Reactor ready – %d action(s), workers=%d, queue_size=%d, overflow=%s',
                    len(self.actions), self.settings.workers, self.settings.queue_size, self.settings.overflow.value)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    async def run(self) -> None:
        """
        Connect, then consume until the stream ends or the connection drops.

        Connection setup errors propagate to the caller. There is no
        reconnection; a lost connection ends the run.
        """
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(self._io, self.session.connect)
        except Exception:
            self._io.shutdown(wait=False)
            self.state = ReactorState.TERMINATED
            raise
        self.state = ReactorState.CONSUMING
        await self.start()

        try:
            deliveries = await loop.run_in_executor(self._io, self.session.consume)
            while True:
                event = await loop.run_in_executor(self._io, next, deliveries, None)
                if event is None:
                    logger.warning('Delivery stream ended')
                    break
                logger.debug("Received '%s' for %s/%s", event.routing_key, event.project, event.package)
                await self.dispatch(event)
            await self.drain()
        except ConnectionLost as exc:
            logger.error('Stopping reactor: %s', exc)
            await self.drain()
        finally:
            self.session.stop()
            await self.stop()
            await loop.run_in_executor(self._io, self.session.close)
            self._io.shutdown(wait=False)
            self.state = ReactorState.TERMINATED
            logger.info('Reactor terminated (dropped=%d)', self.dropped)

    async def start(self) -> None:
        if self._workers:
            return
        self._queue = asyncio.Queue(maxsize=self.settings.queue_size)
        self._workers = [
            asyncio.create_task(self._worker(self._queue), name=f'reactor-worker-{i}')
            for i in range(self.settings.workers)
        ]

    async def stop(self) -> None:
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._queue = None

    async def drain(self) -> None:
        """Wait for every queued work item to finish."""
        if self._queue is not None:
            await self._queue.join()

    # ------------------------------------------------------------------ #
    # Dispatch
    # ------------------------------------------------------------------ #
    async def dispatch(self, event: Event) -> None:
        """Queue one work item per action; never waits for an effect to finish."""
        if self._queue is None:
            raise RuntimeError('Reactor workers are not running; call start() first')

        for action in self.actions:
            logger.debug('Processing action %s', action.describe().type.value)
            item = _WorkItem(action, event)
            if self.settings.overflow is OverflowPolicy.DROP:
                try:
                    self._queue.put_nowait(item)
                except asyncio.QueueFull:
                    self.dropped += 1
                    logger.warning("Dispatch queue full – dropped '%s' for project '%s' (dropped=%d)",
                                   event.routing_key, action.describe().project, self.dropped)
            else:
                await self._put_waiting(self._queue, item)

    async def _put_waiting(self, queue: asyncio.Queue[_WorkItem], item: _WorkItem) -> None:
        # the bus thread is idle while we wait here; keep its heartbeats going
        loop = asyncio.get_running_loop()
        while True:
            try:
                await asyncio.wait_for(queue.put(item), timeout=self.settings.keepalive_interval)
                return
            except asyncio.TimeoutError:
                logger.debug('Dispatch queue still full, servicing the bus')
                await loop.run_in_executor(self._io, self.session.keepalive)

    async def _worker(self, queue: asyncio.Queue[_WorkItem]) -> None:
        while True:
            item = await queue.get()
            try:
                await self._run_effect(item)
            finally:
                queue.task_done()

    async def _run_effect(self, item: _WorkItem) -> None:
        timeout = self.settings.effect_timeout
        try:
            await asyncio.wait_for(item.action.on_event(item.event), timeout=timeout)
        except asyncio.TimeoutError:
            info = item.action.describe()
            err = ActionEffectFailure(f"Action '{info.type.value}' cancelled after {timeout}s", project=info.project)
            logger.error('%s', err)
        except Exception as exc:
            logger.exception("Action %r failed on '%s': %s", item.action, item.event.routing_key, exc)
