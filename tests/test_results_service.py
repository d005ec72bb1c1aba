from datetime import datetime

from conftest import make_answer, make_question
from models import Progress, QuestionSetProgress, VerificationStatus
from services.results_service import ResultsService, compute_score, correct_count


def _progress(*answers):
    return Progress(set_id="s1", answers=list(answers), started_at=datetime.now())


def test_compute_score_weighs_points():
    questions = [make_question("q1", points=10), make_question("q2", points=20)]
    progress = _progress(make_answer("q1", VerificationStatus.CORRECT),
                         make_answer("q2", VerificationStatus.INCORRECT))

    summary = compute_score(progress, questions)

    assert summary.score == 33
    assert summary.total_points == 30


def test_compute_score_is_idempotent():
    questions = [make_question("q1", points=10), make_question("q2", points=20)]
    progress = _progress(make_answer("q2", VerificationStatus.CORRECT))
    assert compute_score(progress, questions) == compute_score(progress, questions)


def test_compute_score_with_no_questions():
    summary = compute_score(_progress(make_answer("q1", VerificationStatus.CORRECT)), [])
    assert summary.score == 0
    assert summary.total_points == 0


def test_unknown_and_unresolved_answers_earn_nothing():
    questions = [make_question("q1", points=10), make_question("q2", points=10)]
    progress = _progress(make_answer("q9", VerificationStatus.CORRECT),
                         make_answer("q1", VerificationStatus.VERIFYING))
    assert compute_score(progress, questions).score == 0


def test_score_rounds_half_up():
    questions = [make_question("q1", points=1), make_question("q2", points=199)]
    progress = _progress(make_answer("q1", VerificationStatus.CORRECT))
    # 100 * 1 / 200 = 0.5
    assert compute_score(progress, questions).score == 1


def test_correct_count():
    progress = _progress(make_answer("q1", VerificationStatus.CORRECT),
                         make_answer("q2", VerificationStatus.INCORRECT),
                         make_answer("q3", VerificationStatus.CORRECT))
    assert correct_count(progress) == 2


async def test_load_results_without_progress(storage):
    assert await ResultsService(storage).load_results("s1", [make_question("q1")]) is None


async def test_pending_answers_block_the_rollup(storage):
    questions = [make_question("q1", points=10), make_question("q2", points=10)]
    await storage.save_progress(_progress(make_answer("q1", VerificationStatus.CORRECT),
                                          make_answer("q2", VerificationStatus.VERIFYING)))

    progress = await ResultsService(storage).load_results("s1", questions)

    assert progress.score == 50
    assert progress.completed_at is None
    assert await storage.get_set_progress("s1") is None
    assert (await storage.get_progress("s1")).completed_at is None


async def test_resolved_progress_is_completed_and_rolled_up(storage):
    questions = [make_question("q1", points=10), make_question("q2", points=20)]
    await storage.save_progress(_progress(make_answer("q1", VerificationStatus.CORRECT),
                                          make_answer("q2", VerificationStatus.INCORRECT)))

    progress = await ResultsService(storage).load_results("s1", questions)

    assert progress.score == 33
    assert progress.total_points == 30
    assert progress.completed_at is not None
    stored = await storage.get_progress("s1")
    assert stored.score == 33
    assert stored.completed_at == progress.completed_at

    rollup = await storage.get_set_progress("s1")
    assert rollup.completed
    assert rollup.high_score == 33
    assert rollup.total_attempts == 1
    assert rollup.last_attempt_date is not None


async def test_reloading_results_counts_the_attempt_once(storage):
    questions = [make_question("q1", points=10)]
    await storage.save_progress(_progress(make_answer("q1", VerificationStatus.CORRECT)))
    service = ResultsService(storage)

    first = await service.load_results("s1", questions)
    second = await service.load_results("s1", questions)

    assert second.completed_at == first.completed_at
    assert (await storage.get_set_progress("s1")).total_attempts == 1


async def test_new_attempt_accumulates_and_keeps_high_score(storage):
    questions = [make_question("q1", points=10)]
    await storage.save_set_progress(QuestionSetProgress(set_id="s1", completed=True, high_score=100,
                                                        total_attempts=2))
    await storage.save_progress(_progress(make_answer("q1", VerificationStatus.INCORRECT)))

    await ResultsService(storage).load_results("s1", questions)

    rollup = await storage.get_set_progress("s1")
    assert rollup.total_attempts == 3
    assert rollup.high_score == 100


async def test_retry_set_clears_progress(storage):
    await storage.save_progress(_progress(make_answer("q1", VerificationStatus.CORRECT)))
    service = ResultsService(storage)

    await service.retry_set("s1")

    assert await storage.get_progress("s1") is None


async def test_list_set_progress(storage):
    await storage.save_set_progress(QuestionSetProgress(set_id="s1", completed=True, high_score=70,
                                                        total_attempts=1))
    rollups = await ResultsService(storage).list_set_progress()
    assert [r.set_id for r in rollups] == ["s1"]
