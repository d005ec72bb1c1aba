import inspect
import logging
from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Union

from models import Answer, Progress, Question, Stroke
from scheduler import PollingCoordinator
from services.progress_storage import ProgressStorage
from services.question_bank import QuestionBank, QuestionBankError
from services.verification_service import VerificationService
from session.reducer import (
    INITIAL_STATE,
    Action,
    QuestionState,
    add_or_update_answer,
    finish_loading,
    question_reducer,
    reset_session,
    set_error,
    set_exiting,
    set_progress,
    set_question_index,
    set_question_set,
    start_loading,
    update_progress,
)

OnVerified = Callable[[Progress], Union[None, Awaitable[None]]]


class Direction(str, Enum):
    NEXT = "next"
    PREVIOUS = "previous"


class QuestionSession:
    """
    One learner's pass through a question set.

    Every state change goes through ``dispatch``; readers use ``state``.
    The progress store, not this object, is where background verification
    results land, so verification outcomes are pulled back in from there.
    """

    def __init__(self, question_bank: QuestionBank, storage: ProgressStorage,
                 verification_service: VerificationService, poller: PollingCoordinator,
                 on_verified: Optional[OnVerified] = None):
        self.logger = logging.getLogger(__name__)
        self.question_bank = question_bank
        self.storage = storage
        self.verification_service = verification_service
        self.poller = poller
        self.on_verified = on_verified
        self._state = INITIAL_STATE

    @property
    def state(self) -> QuestionState:
        return self._state

    def dispatch(self, action: Action) -> QuestionState:
        self._state = question_reducer(self._state, action)
        return self._state

    # --- derived views ---

    @property
    def current_question(self) -> Optional[Question]:
        questions = self._state.current_questions
        index = self._state.current_question_index
        if 0 <= index < len(questions):
            return questions[index]
        return None

    @property
    def is_first_question(self) -> bool:
        return self._state.current_question_index == 0

    @property
    def is_last_question(self) -> bool:
        return self._state.current_question_index == len(self._state.current_questions) - 1

    # --- operations ---

    async def start_question_set(self, set_id: str) -> None:
        state = self._state
        if state.current_set is not None and state.current_set.id == set_id \
                and state.current_progress is not None:
            return

        self.dispatch(set_exiting(False))
        self.dispatch(start_loading())
        try:
            try:
                question_set = self.question_bank.get_question_set(set_id)
                questions = self.question_bank.list_questions(set_id)
            except QuestionBankError as e:
                self.logger.error(f"Error starting question set: {e}", exc_info=True)
                self.dispatch(set_error(f"Failed to load question set {set_id}: {e}"))
                return

            if question_set is None:
                self.dispatch(set_error(f"Question set {set_id} not found"))
                return
            if not questions:
                self.dispatch(set_error(f"Question set {set_id} has no questions"))
                return

            self.dispatch(set_question_set(question_set, questions))
            await self._resolve_progress(set_id, questions)
        finally:
            self.dispatch(finish_loading())

    async def _resolve_progress(self, set_id: str, questions: List[Question]) -> None:
        existing = await self.storage.get_progress(set_id)

        if existing is not None and existing.answers:
            # Resume, keeping the stored index inside the current question list
            index = min(max(existing.current_question_index, 0), len(questions) - 1)
            if index != existing.current_question_index:
                clamped = await self.storage.update_progress(
                    set_id, lambda p: replace(p, current_question_index=index))
                existing = clamped or replace(existing, current_question_index=index)
            self.dispatch(set_progress(existing))
            self.dispatch(set_question_index(index))
            self.logger.info(f"Resuming set {set_id} at question {index + 1}/{len(questions)}")
            return

        progress = Progress(set_id=set_id, current_question_index=0, answers=[], started_at=datetime.now(),
                            user_id=self.storage.user_id)
        self.dispatch(set_progress(progress))
        await self.storage.save_progress(progress)
        self.logger.info(f"Started new progress for set {set_id}")

    async def submit_answer(self, artifact: str, strokes: Optional[List[Stroke]] = None) -> Optional[Answer]:
        progress = self._state.current_progress
        question = self.current_question
        if progress is None or question is None:
            self.dispatch(set_error("No active question to submit an answer for"))
            return None

        previous = progress.find_answer(question.id)
        answer = Answer(
            question_id=question.id,
            user_answer=artifact,
            submitted_at=datetime.now(),
            attempt_number=previous.attempt_number + 1 if previous else 1,
            strokes=strokes,
        )
        self.dispatch(add_or_update_answer(answer))
        self.poller.stop()

        # Merge into the stored record so concurrent status updates survive
        stored = await self.storage.update_progress(progress.set_id, lambda p: p.with_answer(answer))
        if stored is None:
            await self.storage.save_progress(self._state.current_progress or progress.with_answer(answer))

        await self.verification_service.queue_verification(answer, question, progress.set_id)
        await self.poller.start(progress.set_id, self._on_verification_complete, question_id=question.id)
        return answer

    async def _on_verification_complete(self, progress: Progress) -> None:
        current = self._state.current_progress
        if current is None or current.set_id != progress.set_id:
            return
        self.dispatch(set_progress(progress))
        if self.on_verified is not None:
            result = self.on_verified(progress)
            if inspect.isawaitable(result):
                await result

    async def navigate_to_question(self, direction: Direction) -> None:
        direction = Direction(direction)
        state = self._state
        progress = state.current_progress
        if progress is None:
            return

        step = 1 if direction == Direction.NEXT else -1
        new_index = state.current_question_index + step
        if new_index < 0 or new_index >= len(state.current_questions):
            return

        self.poller.stop()
        self.dispatch(set_question_index(new_index))
        moved = self.dispatch(update_progress(current_question_index=new_index)).current_progress

        fresh = await self.storage.update_progress(
            progress.set_id, lambda p: replace(p, current_question_index=new_index))
        if fresh is None:
            fresh = moved
            await self.storage.save_progress(fresh)

        current = self._state.current_progress
        if current is not None and current.set_id == fresh.set_id:
            self.dispatch(set_progress(fresh))

    async def next_question(self) -> None:
        await self.navigate_to_question(Direction.NEXT)

    async def previous_question(self) -> None:
        await self.navigate_to_question(Direction.PREVIOUS)

    def exit_question_set(self) -> None:
        # Stored progress is kept so the set can be resumed
        self.dispatch(set_exiting(True))
        self.poller.stop()
        self.dispatch(reset_session())

    def get_current_answer(self) -> Optional[Answer]:
        progress = self._state.current_progress
        question = self.current_question
        if progress is None or question is None:
            return None
        for answer in reversed(progress.answers):
            if answer.question_id == question.id:
                return answer
        return None
