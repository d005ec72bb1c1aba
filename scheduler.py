import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from apscheduler.jobstores.base import JobLookupError
from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler

import config
from models import Progress
from services.progress_storage import ProgressStorage
from services.verification_service import VerificationService

OnTerminal = Callable[[Progress], Union[None, Awaitable[None]]]


class PollingCoordinator:
    """
    Watches the progress store until verification resolves.

    Two subjects are supported: a single question (``question_id`` given,
    resolved once its answer is correct/incorrect) and a whole set (resolved
    once no answer is pending or verifying). Each coordinator owns at most
    one interval job; starting a new poll cancels the previous one. A poll whose
    progress record disappears stops without calling back.
    """

    def __init__(self, scheduler: AsyncIOScheduler, verification_service: VerificationService,
                 storage: ProgressStorage,
                 question_interval: Optional[float] = None,
                 set_interval: Optional[float] = None):
        self.logger = logging.getLogger(__name__)
        self.scheduler = scheduler
        self.verification_service = verification_service
        self.storage = storage
        self.question_interval = question_interval or config.QUESTION_POLL_INTERVAL_SECONDS
        self.set_interval = set_interval or config.SET_POLL_INTERVAL_SECONDS
        self._job: Optional[Job] = None
        self._generation = 0

    @property
    def is_polling(self) -> bool:
        return self._job is not None

    async def start(self, set_id: str, on_terminal: OnTerminal,
                    question_id: Optional[str] = None,
                    on_update: Optional[OnTerminal] = None) -> None:
        self.stop()
        self._generation += 1
        generation = self._generation

        # Check immediately, then poll at a fixed cadence
        if await self._check(generation, set_id, question_id, on_terminal, on_update):
            return
        if generation != self._generation:
            return

        if not self.scheduler.running:
            self.scheduler.start()
        interval = self.question_interval if question_id else self.set_interval
        self._job = self.scheduler.add_job(
            self._check, 'interval', seconds=interval,
            args=[generation, set_id, question_id, on_terminal, on_update],
            max_instances=1, coalesce=True,
        )
        self.logger.debug(f"Polling set {set_id} question {question_id} every {interval}s")

    def stop(self) -> None:
        # A check already running for an older generation ignores its result
        self._generation += 1
        job, self._job = self._job, None
        if job is None:
            return
        try:
            job.remove()
        except JobLookupError:
            pass

    async def _check(self, generation: int, set_id: str, question_id: Optional[str],
                     on_terminal: OnTerminal, on_update: Optional[OnTerminal]) -> bool:
        if generation != self._generation:
            return True
        try:
            if question_id:
                answer = await self.verification_service.get_verification_status(set_id, question_id)
                if answer is not None and not answer.verification_status.is_terminal:
                    return False
                progress = await self.storage.get_progress(set_id)
                if answer is None and progress is not None:
                    return False
            else:
                progress = await self.storage.get_progress(set_id)
                if progress is not None and on_update is not None and generation == self._generation:
                    await _call(on_update, progress)
                if progress is not None and progress.has_pending_answers:
                    return False
        except Exception as e:
            self.logger.error(f"Error polling verification status: {e}", exc_info=True)
            return False

        if generation != self._generation:
            return True

        self.stop()
        if progress is None:
            # Cleared while polling, e.g. by a retry: nothing left to report
            self.logger.info(f"Progress for set {set_id} is gone, polling stopped")
            return True
        await _call(on_terminal, progress)
        return True


async def _call(callback: Callable[[Progress], Any], progress: Progress) -> None:
    result = callback(progress)
    if inspect.isawaitable(result):
        await result
