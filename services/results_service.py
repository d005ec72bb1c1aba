import logging
import math
from dataclasses import dataclass, replace
from datetime import datetime
from typing import List, Optional, Sequence

from models import Progress, Question, QuestionSetProgress, VerificationStatus
from services.progress_storage import ProgressStorage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoreSummary:
    score: int  # 0..100
    total_points: int


def compute_score(progress: Progress, questions: Sequence[Question]) -> ScoreSummary:
    total_points = sum(q.points for q in questions)
    points_by_id = {q.id: q.points for q in questions}

    earned_points = 0
    for answer in progress.answers:
        if answer.verification_status == VerificationStatus.CORRECT:
            earned_points += points_by_id.get(answer.question_id, 0)

    if total_points <= 0:
        return ScoreSummary(score=0, total_points=0)

    # Round half up
    score = int(math.floor(100 * earned_points / total_points + 0.5))
    return ScoreSummary(score=score, total_points=total_points)


def correct_count(progress: Progress) -> int:
    return sum(1 for a in progress.answers if a.verification_status == VerificationStatus.CORRECT)


def is_ready_for_rollup(progress: Progress) -> bool:
    return not progress.has_pending_answers


class ResultsService:
    def __init__(self, storage: ProgressStorage):
        self.storage = storage

    async def load_results(self, set_id: str, questions: Sequence[Question]) -> Optional[Progress]:
        """
        Loads the stored progress with its score filled in.

        Once nothing is pending or verifying, the progress is marked completed
        and the set rollup is written. While answers are still resolving the
        returned score is provisional and nothing is persisted.
        """
        progress = await self.storage.get_progress(set_id)
        if progress is None:
            return None

        summary = compute_score(progress, questions)
        if not is_ready_for_rollup(progress):
            return replace(progress, score=summary.score, total_points=summary.total_points)

        newly_completed = []

        def mark_completed(stored: Progress) -> Progress:
            if stored.completed_at is None:
                newly_completed.append(stored.set_id)
            stored_summary = compute_score(stored, questions)
            return replace(stored, completed_at=stored.completed_at or datetime.now(),
                           score=stored_summary.score, total_points=stored_summary.total_points)

        completed = await self.storage.update_progress(set_id, mark_completed)
        if completed is None:
            completed = mark_completed(progress)

        await self._write_rollup(set_id, completed.score, bool(newly_completed))
        return completed

    async def _write_rollup(self, set_id: str, score: int, first_completion: bool) -> QuestionSetProgress:
        previous = await self.storage.get_set_progress(set_id)
        if previous is None:
            total_attempts = 1
            high_score = score
        else:
            total_attempts = previous.total_attempts + (1 if first_completion else 0)
            high_score = max(previous.high_score, score)

        rollup = QuestionSetProgress(
            set_id=set_id,
            completed=True,
            high_score=high_score,
            last_attempt_date=datetime.now(),
            total_attempts=total_attempts,
        )
        await self.storage.save_set_progress(rollup)
        logger.info(f"Set {set_id} completed with score {score} (attempt {total_attempts})")
        return rollup

    async def retry_set(self, set_id: str) -> None:
        """Drops the attempt so the next start begins from the first question."""
        await self.storage.clear_progress(set_id)

    async def list_set_progress(self) -> List[QuestionSetProgress]:
        return await self.storage.get_all_set_progress()
