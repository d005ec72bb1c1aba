import asyncio
import logging
from dataclasses import replace
from typing import Optional, Set

import config
from llm.verifier import SolutionVerifier, VerificationError
from models import Answer, Progress, Question, VerificationStatus
from services.progress_storage import ProgressStorage

CORRECT_FEEDBACK = "Great job! Your answer is correct."
ERROR_FEEDBACK = "Error verifying answer. Please try again."


def incorrect_feedback(question: Question) -> str:
    return f"Your answer is incorrect. The correct answer is: {question.correct_answer}"


class VerificationService:
    """
    Runs answer verification in the background and records each status
    transition (pending -> verifying -> correct/incorrect) in the progress store.
    """

    def __init__(self, storage: ProgressStorage, verifier: SolutionVerifier,
                 timeout: Optional[float] = None):
        self.logger = logging.getLogger(__name__)
        self.storage = storage
        self.verifier = verifier
        self.timeout = timeout if timeout is not None else config.VERIFICATION_TIMEOUT_SECONDS
        self._tasks: Set[asyncio.Task] = set()

    async def queue_verification(self, answer: Answer, question: Question, set_id: str) -> None:
        """
        Accepts a pending answer for verification and returns without waiting
        for the oracle. Answers that are no longer pending are dropped.
        """
        if answer.verification_status != VerificationStatus.PENDING:
            self.logger.debug(f"Skipping verification for question {answer.question_id}: "
                              f"status is already {answer.verification_status.value}")
            return

        accepted = await self._update_answer_status(set_id, answer, VerificationStatus.VERIFYING)
        if not accepted:
            self.logger.debug(f"Dropping verification for question {answer.question_id}: "
                              "answer was superseded or progress is gone")
            return

        task = asyncio.create_task(self._verify_answer(accepted, question, set_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _verify_answer(self, answer: Answer, question: Question, set_id: str) -> None:
        try:
            result = await asyncio.wait_for(
                self.verifier.verify(question.text, answer.user_answer),
                timeout=self.timeout,
            )
        except (VerificationError, asyncio.TimeoutError) as e:
            self.logger.error(f"Verification error for question {question.id}: {e!r}")
            await self._update_answer_status(set_id, answer, VerificationStatus.INCORRECT, ERROR_FEEDBACK)
            return
        except Exception as e:
            self.logger.error(f"Error in verification process: {e}", exc_info=True)
            await self._update_answer_status(set_id, answer, VerificationStatus.INCORRECT, ERROR_FEEDBACK)
            return

        if result.is_correct:
            await self._update_answer_status(set_id, answer, VerificationStatus.CORRECT, CORRECT_FEEDBACK)
        else:
            await self._update_answer_status(set_id, answer, VerificationStatus.INCORRECT,
                                             incorrect_feedback(question))

    async def _update_answer_status(self, set_id: str, answer: Answer, status: VerificationStatus,
                                    feedback: Optional[str] = None) -> Optional[Answer]:
        """
        Applies one status transition to the stored answer of this submission.
        Returns the updated answer, or None if it was not applied.
        """
        applied = []

        def mutate(progress: Progress) -> Progress:
            stored = progress.find_answer(answer.question_id)
            if stored is None or not stored.is_same_submission(answer):
                return progress
            if stored.verification_status.is_terminal:
                return progress
            if status == VerificationStatus.VERIFYING and stored.verification_status != VerificationStatus.PENDING:
                return progress
            updated = replace(stored, verification_status=status, feedback=feedback)
            applied.append(updated)
            return progress.with_answer(updated)

        progress = await self.storage.update_progress(set_id, mutate)
        if progress is None:
            self.logger.error(f"No progress found for setId: {set_id}")
            return None
        if not applied:
            return None

        self.logger.info(f"Updated answer status for question {answer.question_id} to {status.value}")
        return applied[0]

    async def get_verification_status(self, set_id: str, question_id: str) -> Optional[Answer]:
        progress = await self.storage.get_progress(set_id)
        if progress is None:
            return None
        return progress.find_answer(question_id)

    async def join(self) -> None:
        """Waits for every verification currently in flight."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
