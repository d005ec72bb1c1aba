from conftest import make_answer, make_question, make_set
from models import Progress, VerificationStatus
from session.reducer import (
    INITIAL_STATE,
    Action,
    ActionType,
    add_or_update_answer,
    clear_error,
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


def _reduce(state, *actions):
    for action in actions:
        state = question_reducer(state, action)
    return state


def test_loading_and_errors():
    state = _reduce(INITIAL_STATE, set_error("old"), start_loading())
    assert state.is_loading
    assert state.error is None

    state = _reduce(state, set_error("Question set 9 not found"))
    assert state.error == "Question set 9 not found"
    assert not state.is_loading

    state = _reduce(state, clear_error(), start_loading(), finish_loading())
    assert state.error is None
    assert not state.is_loading


def test_set_question_set_resets_index():
    questions = [make_question("q1"), make_question("q2")]
    state = _reduce(INITIAL_STATE, set_question_index(1), set_question_set(make_set(), questions))

    assert state.current_set.id == "s1"
    assert state.current_questions == questions
    assert state.current_question_index == 0


def test_add_or_update_answer_upserts_by_question():
    state = _reduce(INITIAL_STATE, set_progress(Progress(set_id="s1")))
    first = make_answer("q1")
    state = _reduce(state, add_or_update_answer(first), add_or_update_answer(make_answer("q2")))
    assert [a.question_id for a in state.current_progress.answers] == ["q1", "q2"]

    again = make_answer("q1", VerificationStatus.PENDING, image="data:image/png;base64,ZZZZ")
    state = _reduce(state, add_or_update_answer(again))

    assert len(state.current_progress.answers) == 2
    assert state.current_progress.answers[0].user_answer == "data:image/png;base64,ZZZZ"


def test_answer_without_progress_is_ignored():
    state = question_reducer(INITIAL_STATE, add_or_update_answer(make_answer("q1")))
    assert state is INITIAL_STATE


def test_update_progress_merges_fields():
    state = _reduce(INITIAL_STATE, set_progress(Progress(set_id="s1")), update_progress(score=80, total_points=60))
    assert state.current_progress.score == 80
    assert state.current_progress.total_points == 60
    assert question_reducer(INITIAL_STATE, update_progress(score=1)) is INITIAL_STATE


def test_reset_keeps_exiting_flag():
    state = _reduce(
        INITIAL_STATE,
        set_question_set(make_set(), [make_question("q1")]),
        set_progress(Progress(set_id="s1")),
        set_exiting(True),
        reset_session(),
    )
    assert state.is_exiting
    assert state.current_set is None
    assert state.current_progress is None
    assert state.current_questions == []


def test_reducer_does_not_mutate_previous_state():
    before = _reduce(INITIAL_STATE, set_progress(Progress(set_id="s1")))
    after = question_reducer(before, add_or_update_answer(make_answer("q1")))
    assert before.current_progress.answers == []
    assert len(after.current_progress.answers) == 1


def test_set_exiting_action():
    state = question_reducer(INITIAL_STATE, Action(ActionType.SET_EXITING, True))
    assert state.is_exiting
