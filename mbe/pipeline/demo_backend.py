import asyncio
import logging
import random
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Dict, Optional, Set

from mbe.domain.errors import BackendError, CancellationError, SubmissionError
from mbe.domain.events import Completed, Failed, LogLine, Progress, Started
from mbe.domain.models import ConversionConfig, derive_output_name
from mbe.infrastructure.backend import EventChannel, SubmitConfig


@dataclass
class DemoPlan:
    """Scripted outcomes for the simulated backend, keyed by file name."""
    steps: int = 5
    step_delay_s: float = 0.0
    jitter_pct: float = 0.0
    max_concurrent: int = 2
    reject: Set[str] = field(default_factory=set)  # submit raises
    fail_at: Dict[str, float] = field(default_factory=dict)  # name -> percent
    seed: Optional[int] = None


def output_path_for(path: str, config: SubmitConfig) -> str:
    source = PurePath(path)
    if isinstance(config, ConversionConfig):
        base = config.output_name or derive_output_name(source.name)
        return str(source.with_name(f"{base}.{config.container}"))
    return str(source.with_name(f"{source.stem or 'output'}_spatial{source.suffix}"))


class SimulatedBackend:
    """In-process stand-in for the transcoding / spatial backend.

    Accepts submissions immediately and plays each item through
    start → progress → complete (or failure) on the event channel, with at
    most ``max_concurrent`` items active at a time. Cancelling a running item
    ends it with a Failed event, as the real backend reports cancellations.
    """

    def __init__(self, channel: EventChannel, plan: Optional[DemoPlan] = None):
        self.channel = channel
        self.plan = plan or DemoPlan()
        self.logger = logging.getLogger(__name__)
        self._rng = random.Random(self.plan.seed)
        self._slots = asyncio.Semaphore(max(1, self.plan.max_concurrent))
        self._tasks: Dict[str, asyncio.Task] = {}

    async def submit(self, item_id: str, path: str, config: SubmitConfig) -> None:
        name = PurePath(path).name
        if name in self.plan.reject:
            raise SubmissionError(item_id, f"Backend rejected {name}")
        if item_id in self._tasks and not self._tasks[item_id].done():
            raise SubmissionError(item_id, f"{name} is already being processed")
        self._tasks[item_id] = asyncio.create_task(self._process(item_id, path, config))
        self.logger.debug(f"Accepted {name} ({item_id})")

    async def cancel(self, item_id: str) -> None:
        task = self._tasks.get(item_id)
        if task is None or task.done():
            raise CancellationError(item_id, "no running task")
        task.cancel()

    async def drain(self, close: bool = True):
        """Wait for every accepted item to finish, then optionally close the channel."""
        while True:
            pending = [t for t in self._tasks.values() if not t.done()]
            if not pending:
                break
            await asyncio.gather(*pending, return_exceptions=True)
        if close:
            self.channel.close()

    def _delay(self) -> float:
        jitter = self.plan.jitter_pct
        return max(0.0, self.plan.step_delay_s * self._rng.uniform(1.0 - jitter, 1.0 + jitter))

    async def _process(self, item_id: str, path: str, config: SubmitConfig):
        name = PurePath(path).name
        try:
            async with self._slots:
                await self.channel.put(Started(item_id=item_id))
                await self.channel.put(LogLine(item_id=item_id, line=f"Processing {name}"))
                fail_at = self.plan.fail_at.get(name)
                steps = max(1, self.plan.steps)
                for step in range(1, steps + 1):
                    await asyncio.sleep(self._delay())
                    percent = 100.0 * step / steps
                    if fail_at is not None and percent >= fail_at:
                        raise BackendError(item_id, f"Processing failed at {fail_at:.0f}%")
                    await self.channel.put(Progress(item_id=item_id, percent=percent))
                output = output_path_for(path, config)
                await self.channel.put(LogLine(item_id=item_id, line=f"Wrote {output}"))
                await self.channel.put(Completed(item_id=item_id, output_path=output))
        except BackendError as e:
            await self.channel.put(Failed(item_id=item_id, message=e.reason))
        except asyncio.CancelledError:
            self.channel.put_nowait(Failed(item_id=item_id, message="Cancelled by user"))
            raise
