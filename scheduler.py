import asyncio
import logging
from datetime import datetime, timezone

UTC = timezone.utc
logger = logging.getLogger("uvicorn")

class Scheduler:
    """
    Minimal in-process scheduler (interval based).
    Usage:
        sched = Scheduler()
        sched.every(900, coro, arg1, arg2=...)
        await sched.run_forever()
    A job is not started again while its previous run is still going.
    """
    def __init__(self, tick: float = 1.0):
        self.tick = tick
        self.jobs = []  # list[[seconds, coro, args, kwargs, last_run, task]]

    def every(self, seconds: int, coro, *args, **kwargs):
        self.jobs.append([seconds, coro, args, kwargs, None, None])

    async def _guarded(self, coro, args, kwargs):
        try:
            await coro(*args, **kwargs)
        except Exception:
            logger.exception("[scheduler] job %s failed", getattr(coro, "__name__", coro))

    def due(self, now: datetime) -> list:
        ready = []
        for job in self.jobs:
            seconds, _, _, _, last_run, task = job
            if task is not None and not task.done():
                continue
            if last_run is None or (now - last_run).total_seconds() >= seconds:
                ready.append(job)
        return ready

    async def run_forever(self):
        try:
            while True:
                now = datetime.now(tz=UTC)
                for job in self.due(now):
                    job[5] = asyncio.create_task(self._guarded(job[1], job[2], job[3]))
                    job[4] = now
                await asyncio.sleep(self.tick)
        finally:
            for job in self.jobs:
                if job[5] is not None and not job[5].done():
                    job[5].cancel()
