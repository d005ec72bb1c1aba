import asyncio
from datetime import datetime
from typing import Dict, List, Optional, Union

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

import db
from llm.verifier import VerificationResult
from models import Answer, Progress, Question, QuestionSet, VerificationStatus
from scheduler import PollingCoordinator
from services.progress_storage import ProgressStorage
from services.verification_service import VerificationService
from session.question_session import QuestionSession


def make_question(question_id: str, set_id: str = "s1", points: int = 10, order: int = 1,
                  correct_answer: Optional[str] = "42") -> Question:
    return Question(
        id=question_id,
        set_id=set_id,
        order=order,
        text=f"Question {question_id}",
        type="math",
        difficulty="easy",
        points=points,
        correct_answer=correct_answer,
    )


def make_set(set_id: str = "s1", total: int = 3) -> QuestionSet:
    return QuestionSet(
        id=set_id,
        title=f"Set {set_id}",
        description="Practice set",
        subject="Algebra",
        grade="8",
        total_questions=total,
        estimated_time=10,
        difficulty="easy",
    )


def make_answer(question_id: str, status: VerificationStatus = VerificationStatus.PENDING,
                image: str = "data:image/png;base64,AAAA") -> Answer:
    return Answer(question_id=question_id, user_answer=image, submitted_at=datetime.now(),
                  verification_status=status)


class FakeVerifier:
    """Scripted oracle: verdicts keyed by question text, optional gate to hold calls open."""

    def __init__(self, verdicts: Optional[Dict[str, Union[bool, Exception]]] = None, default: bool = True):
        self.verdicts = verdicts or {}
        self.default = default
        self.calls: List[tuple] = []
        self.gate: Optional[asyncio.Event] = None

    async def verify(self, question_text: str, image: str) -> VerificationResult:
        self.calls.append((question_text, image))
        if self.gate is not None:
            await self.gate.wait()
        verdict = self.verdicts.get(question_text, self.default)
        if isinstance(verdict, Exception):
            raise verdict
        return VerificationResult(is_correct=verdict)


class FakeQuestionBank:
    def __init__(self, question_sets: List[QuestionSet], questions: List[Question],
                 error: Optional[Exception] = None):
        self.question_sets = question_sets
        self.questions = questions
        self.error = error
        self.set_calls = 0
        self.question_calls = 0

    def list_question_sets(self) -> List[QuestionSet]:
        self.set_calls += 1
        if self.error:
            raise self.error
        return list(self.question_sets)

    def get_question_set(self, set_id: str) -> Optional[QuestionSet]:
        return next((qs for qs in self.list_question_sets() if qs.id == set_id), None)

    def list_questions(self, set_id: str) -> List[Question]:
        self.question_calls += 1
        if self.error:
            raise self.error
        return [q for q in self.questions if q.set_id == set_id]


class CountingStorage(ProgressStorage):
    def __init__(self, user_id: Optional[str] = None):
        super().__init__(user_id)
        self.saves = 0

    async def save_progress(self, progress: Progress) -> None:
        self.saves += 1
        await super().save_progress(progress)


@pytest.fixture(autouse=True)
def temp_db(tmp_path, monkeypatch):
    path = str(tmp_path / "test.db")
    monkeypatch.setattr(db, "DB_PATH", path)
    db.create_tables()
    return path


@pytest.fixture
def storage():
    return CountingStorage()


@pytest.fixture
def verifier():
    return FakeVerifier()


@pytest.fixture
def verification_service(storage, verifier):
    return VerificationService(storage, verifier, timeout=2.0)


@pytest.fixture
async def scheduler():
    sched = AsyncIOScheduler()
    yield sched
    if sched.running:
        sched.shutdown(wait=False)


@pytest.fixture
def poller(scheduler, verification_service, storage):
    return PollingCoordinator(scheduler, verification_service, storage,
                              question_interval=0.02, set_interval=0.02)


@pytest.fixture
def questions():
    return [
        make_question("q1", points=10, order=1),
        make_question("q2", points=20, order=2),
        make_question("q3", points=30, order=3),
    ]


@pytest.fixture
def question_bank(questions):
    return FakeQuestionBank([make_set("s1", total=3), make_set("empty", total=0)], questions)


@pytest.fixture
def session(question_bank, storage, verification_service, poller):
    return QuestionSession(question_bank, storage, verification_service, poller)


@pytest.fixture
def wait_until():
    async def _wait(predicate, timeout: float = 2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            result = predicate()
            if asyncio.iscoroutine(result):
                result = await result
            if result:
                return
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.01)
    return _wait
