from dataclasses import dataclass, field, asdict, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class VerificationStatus(str, Enum):
    PENDING = "pending"
    VERIFYING = "verifying"
    CORRECT = "correct"
    INCORRECT = "incorrect"

    @property
    def is_terminal(self) -> bool:
        return self in (VerificationStatus.CORRECT, VerificationStatus.INCORRECT)


def _dt_to_str(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _str_to_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass(frozen=True)
class QuestionSet:
    id: str
    title: str
    description: str
    subject: str
    grade: str
    total_questions: int
    estimated_time: int  # minutes
    difficulty: str
    icon: Optional[str] = None
    color: Optional[str] = None


@dataclass(frozen=True)
class Question:
    id: str
    set_id: str
    order: int
    text: str
    type: str  # math | text | multiple-choice
    difficulty: str  # easy | medium | hard
    points: int
    image_url: Optional[str] = None
    options: Optional[List[str]] = None
    correct_answer: Optional[str] = None


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class Stroke:
    points: List[Point]
    color: str
    width: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Stroke":
        return cls(
            points=[Point(p["x"], p["y"]) for p in data.get("points", [])],
            color=data.get("color", "#000000"),
            width=data.get("width", 1.0),
        )


@dataclass(frozen=True)
class Answer:
    question_id: str
    user_answer: str  # data URL of the rendered drawing
    submitted_at: datetime
    verification_status: VerificationStatus = VerificationStatus.PENDING
    attempt_number: int = 1
    strokes: Optional[List[Stroke]] = None
    feedback: Optional[str] = None

    def is_same_submission(self, other: "Answer") -> bool:
        return self.question_id == other.question_id and self.submitted_at == other.submitted_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "questionId": self.question_id,
            "userAnswer": self.user_answer,
            "submittedAt": _dt_to_str(self.submitted_at),
            "verificationStatus": self.verification_status.value,
            "attemptNumber": self.attempt_number,
            "strokes": [s.to_dict() for s in self.strokes] if self.strokes is not None else None,
            "feedback": self.feedback,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Answer":
        strokes = data.get("strokes")
        return cls(
            question_id=str(data["questionId"]),
            user_answer=data["userAnswer"],
            submitted_at=_str_to_dt(data["submittedAt"]),
            verification_status=VerificationStatus(data.get("verificationStatus", "pending")),
            attempt_number=int(data.get("attemptNumber", 1)),
            strokes=[Stroke.from_dict(s) for s in strokes] if strokes is not None else None,
            feedback=data.get("feedback"),
        )


@dataclass(frozen=True)
class Progress:
    set_id: str
    current_question_index: int = 0
    answers: List[Answer] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    user_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    score: Optional[int] = None
    total_points: Optional[int] = None

    def find_answer(self, question_id: str) -> Optional[Answer]:
        for answer in self.answers:
            if answer.question_id == question_id:
                return answer
        return None

    def with_answer(self, answer: Answer) -> "Progress":
        """Returns a copy with `answer` replacing any live answer for the same question."""
        answers = list(self.answers)
        for i, existing in enumerate(answers):
            if existing.question_id == answer.question_id:
                answers[i] = answer
                break
        else:
            answers.append(answer)
        return replace(self, answers=answers)

    @property
    def has_pending_answers(self) -> bool:
        return any(not a.verification_status.is_terminal for a in self.answers)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "setId": self.set_id,
            "userId": self.user_id,
            "currentQuestionIndex": self.current_question_index,
            "answers": [a.to_dict() for a in self.answers],
            "startedAt": _dt_to_str(self.started_at),
            "completedAt": _dt_to_str(self.completed_at),
            "score": self.score,
            "totalPoints": self.total_points,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Progress":
        return cls(
            set_id=str(data["setId"]),
            user_id=data.get("userId"),
            current_question_index=int(data.get("currentQuestionIndex", 0)),
            answers=[Answer.from_dict(a) for a in data.get("answers", [])],
            started_at=_str_to_dt(data.get("startedAt")) or datetime.now(),
            completed_at=_str_to_dt(data.get("completedAt")),
            score=data.get("score"),
            total_points=data.get("totalPoints"),
        )


@dataclass(frozen=True)
class QuestionSetProgress:
    set_id: str
    completed: bool
    high_score: int
    total_attempts: int
    last_attempt_date: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "setId": self.set_id,
            "completed": self.completed,
            "highScore": self.high_score,
            "lastAttemptDate": _dt_to_str(self.last_attempt_date),
            "totalAttempts": self.total_attempts,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QuestionSetProgress":
        return cls(
            set_id=str(data["setId"]),
            completed=bool(data.get("completed", False)),
            high_score=int(data.get("highScore", 0)),
            last_attempt_date=_str_to_dt(data.get("lastAttemptDate")),
            total_attempts=int(data.get("totalAttempts", 0)),
        )
