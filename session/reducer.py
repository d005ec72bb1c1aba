from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, List, Optional

from models import Progress, Question, QuestionSet


class ActionType(str, Enum):
    START_LOADING = "START_LOADING"
    FINISH_LOADING = "FINISH_LOADING"
    SET_ERROR = "SET_ERROR"
    CLEAR_ERROR = "CLEAR_ERROR"
    SET_QUESTION_SET = "SET_QUESTION_SET"
    SET_PROGRESS = "SET_PROGRESS"
    UPDATE_PROGRESS = "UPDATE_PROGRESS"
    SET_QUESTION_INDEX = "SET_QUESTION_INDEX"
    ADD_OR_UPDATE_ANSWER = "ADD_OR_UPDATE_ANSWER"
    SET_EXITING = "SET_EXITING"
    RESET_SESSION = "RESET_SESSION"


@dataclass(frozen=True)
class Action:
    type: ActionType
    payload: Any = None


@dataclass(frozen=True)
class QuestionState:
    current_set: Optional[QuestionSet] = None
    current_questions: List[Question] = field(default_factory=list)
    current_progress: Optional[Progress] = None
    current_question_index: int = 0
    is_loading: bool = False
    is_exiting: bool = False
    error: Optional[str] = None


INITIAL_STATE = QuestionState()


def start_loading() -> Action:
    return Action(ActionType.START_LOADING)


def finish_loading() -> Action:
    return Action(ActionType.FINISH_LOADING)


def set_error(message: str) -> Action:
    return Action(ActionType.SET_ERROR, message)


def clear_error() -> Action:
    return Action(ActionType.CLEAR_ERROR)


def set_question_set(question_set: QuestionSet, questions: List[Question]) -> Action:
    return Action(ActionType.SET_QUESTION_SET, (question_set, list(questions)))


def set_progress(progress: Progress) -> Action:
    return Action(ActionType.SET_PROGRESS, progress)


def update_progress(**fields) -> Action:
    return Action(ActionType.UPDATE_PROGRESS, fields)


def set_question_index(index: int) -> Action:
    return Action(ActionType.SET_QUESTION_INDEX, index)


def add_or_update_answer(answer) -> Action:
    return Action(ActionType.ADD_OR_UPDATE_ANSWER, answer)


def set_exiting(flag: bool) -> Action:
    return Action(ActionType.SET_EXITING, flag)


def reset_session() -> Action:
    return Action(ActionType.RESET_SESSION)


def question_reducer(state: QuestionState, action: Action) -> QuestionState:
    """Pure transition: returns the next state, never mutates `state`."""
    kind = action.type

    if kind == ActionType.START_LOADING:
        return replace(state, is_loading=True, error=None)

    if kind == ActionType.FINISH_LOADING:
        return replace(state, is_loading=False)

    if kind == ActionType.SET_ERROR:
        return replace(state, error=action.payload, is_loading=False)

    if kind == ActionType.CLEAR_ERROR:
        return replace(state, error=None)

    if kind == ActionType.SET_QUESTION_SET:
        question_set, questions = action.payload
        return replace(state, current_set=question_set, current_questions=questions,
                       current_question_index=0)

    if kind == ActionType.SET_PROGRESS:
        return replace(state, current_progress=action.payload)

    if kind == ActionType.UPDATE_PROGRESS:
        if state.current_progress is None:
            return state
        return replace(state, current_progress=replace(state.current_progress, **action.payload))

    if kind == ActionType.SET_QUESTION_INDEX:
        return replace(state, current_question_index=action.payload)

    if kind == ActionType.ADD_OR_UPDATE_ANSWER:
        if state.current_progress is None:
            return state
        return replace(state, current_progress=state.current_progress.with_answer(action.payload))

    if kind == ActionType.SET_EXITING:
        return replace(state, is_exiting=action.payload)

    if kind == ActionType.RESET_SESSION:
        return replace(INITIAL_STATE, is_exiting=state.is_exiting)

    return state
