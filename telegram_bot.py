import base64
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from telegram import Update, BotCommand
from telegram.ext import ApplicationBuilder, CommandHandler, MessageHandler, filters, ContextTypes

import config
from llm.verifier import SolutionVerifier
from models import Answer, Progress, VerificationStatus
from scheduler import PollingCoordinator
from services.progress_storage import ProgressStorage
from services.question_bank import QuestionBank, QuestionBankError
from services.results_service import ResultsService, correct_count
from services.verification_service import VerificationService
from session.question_session import QuestionSession

logger = logging.getLogger(__name__)

# Initialize Services (Globally available but initialized safely)
question_bank = QuestionBank()
poll_scheduler = AsyncIOScheduler()
verifier: Optional[SolutionVerifier] = None  # Will be initialized in create_app

STATUS_ICONS = {
    VerificationStatus.PENDING: "⏳",
    VerificationStatus.VERIFYING: "⏳",
    VerificationStatus.CORRECT: "✅",
    VerificationStatus.INCORRECT: "❌",
}


@dataclass
class Learner:
    """Everything one chat owns: its own progress records, session and pollers."""
    storage: ProgressStorage
    verification_service: VerificationService
    results_service: ResultsService
    session: QuestionSession
    results_poller: PollingCoordinator


learners: Dict[int, Learner] = {}


def get_learner(chat_id: int, context: ContextTypes.DEFAULT_TYPE) -> Learner:
    learner = learners.get(chat_id)
    if learner is None:
        storage = ProgressStorage(user_id=str(chat_id))
        verification_service = VerificationService(storage, verifier)

        async def on_verified(progress: Progress):
            await send_verification_feedback(chat_id, context, progress)

        session = QuestionSession(
            question_bank, storage, verification_service,
            PollingCoordinator(poll_scheduler, verification_service, storage),
            on_verified=on_verified,
        )
        learner = Learner(
            storage=storage,
            verification_service=verification_service,
            results_service=ResultsService(storage),
            session=session,
            results_poller=PollingCoordinator(poll_scheduler, verification_service, storage),
        )
        learners[chat_id] = learner
    return learner


def get_session(chat_id: int) -> Optional[QuestionSession]:
    learner = learners.get(chat_id)
    return learner.session if learner else None


def format_question(session: QuestionSession) -> str:
    question = session.current_question
    state = session.state
    total = len(state.current_questions)
    text = (
        f"📝 {state.current_set.title} - Question {state.current_question_index + 1}/{total}\n"
        f"🔹 Difficulty: {question.difficulty.upper()} · {question.points} points\n\n"
        f"{question.text}\n\n"
    )
    answer = session.get_current_answer()
    if answer:
        text += f"{STATUS_ICONS[answer.verification_status]} Your last answer: {answer.verification_status.value}\n"
    text += "👇 Send a photo of your hand-written solution."
    return text


def receipt_text(session: QuestionSession, answer: Answer) -> Optional[str]:
    """Acknowledgement for a submission, or None once its feedback was already sent."""
    current = session.get_current_answer()
    if current is not None and current.is_same_submission(answer) and current.verification_status.is_terminal:
        return None
    return (
        f"📨 Answer received (attempt {answer.attempt_number}). Verifying in the background...\n"
        "You can move on with /next."
    )


async def send_verification_feedback(chat_id: int, context: ContextTypes.DEFAULT_TYPE, progress: Progress):
    session = get_session(chat_id)
    if session is None or session.current_question is None:
        return
    answer = session.get_current_answer()
    if not answer or not answer.verification_status.is_terminal:
        return

    if answer.verification_status == VerificationStatus.CORRECT:
        text = f"✅ Correct!\n\n{answer.feedback}"
    else:
        text = f"❌ Incorrect.\n\n{answer.feedback}"
    if session.is_last_question:
        text += "\n\nThat was the last question. Use /results to see your score."
    else:
        text += "\n\nUse /next for the next question."
    await context.bot.send_message(chat_id=chat_id, text=text)


async def post_init(application):
    """Sets the bot commands in the menu."""
    commands = [
        BotCommand("sets", "List question sets"),
        BotCommand("begin", "Start or resume a set"),
        BotCommand("next", "Next question"),
        BotCommand("prev", "Previous question"),
        BotCommand("results", "Show results"),
        BotCommand("retry", "Restart a set"),
        BotCommand("progress", "Saved attempts"),
        BotCommand("exit", "Leave the current set"),
        BotCommand("help", "Get help"),
    ]
    await application.bot.set_my_commands(commands)


async def start(update: Update, context: ContextTypes.DEFAULT_TYPE):
    user = update.effective_user
    welcome_text = (
        f"✏️ **Welcome, {user.first_name}!**\n\n"
        "📖 **How it works:**\n"
        "1. Pick a question set with /sets and /begin.\n"
        "2. Solve each question on paper and send me a photo.\n"
        "3. I check it in the background - keep going while I do.\n"
        "4. Use /results at the end to see your score."
    )
    await update.message.reply_text(welcome_text, parse_mode='Markdown')


async def sets_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    try:
        question_sets = question_bank.list_question_sets()
    except QuestionBankError as e:
        logger.error(f"Could not list question sets: {e}")
        await update.message.reply_text("⚠️ Could not load question sets. Please try again later.")
        return

    learner = get_learner(update.effective_chat.id, context)
    rollups = {sp.set_id: sp for sp in await learner.results_service.list_set_progress()}
    lines = ["📚 Question sets:\n"]
    for qs in question_sets:
        line = f"{qs.icon or '•'} {qs.id}. {qs.title} ({qs.total_questions} questions, ~{qs.estimated_time} min)"
        rollup = rollups.get(qs.id)
        if rollup:
            line += f" - best {rollup.high_score}%, {rollup.total_attempts} attempt(s)"
        lines.append(line)
    lines.append("\nStart one with /begin <id>")
    await update.message.reply_text("\n".join(lines))


async def begin_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    if not context.args:
        await update.message.reply_text("Usage: /begin <set id>")
        return

    session = get_learner(update.effective_chat.id, context).session
    await session.start_question_set(context.args[0])

    if session.state.error:
        await update.message.reply_text(f"⚠️ {session.state.error}\n\nUse /sets to pick another set.")
        return
    await update.message.reply_text(format_question(session))


async def handle_photo(update: Update, context: ContextTypes.DEFAULT_TYPE):
    session = get_session(update.effective_chat.id)
    if session is None or session.current_question is None:
        await update.message.reply_text("Please start a question set with /begin <id> first.")
        return

    photo_file = await update.message.photo[-1].get_file()
    data = await photo_file.download_as_bytearray()
    image = "data:image/jpeg;base64," + base64.b64encode(bytes(data)).decode("ascii")

    answer = await session.submit_answer(image)
    if answer is None:
        await update.message.reply_text(f"⚠️ {session.state.error}")
        return
    text = receipt_text(session, answer)
    if text:
        await update.message.reply_text(text)


async def navigate(update: Update, context: ContextTypes.DEFAULT_TYPE, forward: bool):
    session = get_session(update.effective_chat.id)
    if session is None or session.state.current_progress is None:
        await update.message.reply_text("No active question set. Use /begin <id>.")
        return

    if forward and session.is_last_question:
        await update.message.reply_text("That was the last question. Use /results to see your score.")
        return
    if not forward and session.is_first_question:
        await update.message.reply_text("You are already at the first question.")
        return

    if forward:
        await session.next_question()
    else:
        await session.previous_question()
    await update.message.reply_text(format_question(session))


async def next_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await navigate(update, context, forward=True)


async def prev_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await navigate(update, context, forward=False)


async def exit_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    session = get_session(update.effective_chat.id)
    if session is not None:
        session.exit_question_set()
    await update.message.reply_text("👋 Left the question set. Your progress is saved - /begin it again to resume.")


def format_results(progress: Progress, questions) -> str:
    total = len(questions)
    correct = correct_count(progress)
    score = progress.score or 0
    header = "🎉 Congratulations!" if score >= 70 else "💪 Good effort!"
    lines = [
        header,
        f"Score: {score}%  ·  Correct: {correct}/{total}  ·  Total points: {progress.total_points}",
        "",
    ]
    for index, question in enumerate(questions, start=1):
        answer = progress.find_answer(question.id)
        if answer is None:
            lines.append(f"➖ Question {index}: not answered")
        elif not answer.verification_status.is_terminal:
            lines.append(f"⏳ Question {index}: verifying...")
        elif answer.verification_status == VerificationStatus.CORRECT:
            lines.append(f"✅ Question {index}: +{question.points} points")
        else:
            lines.append(f"❌ Question {index}: 0 points")
    return "\n".join(lines)


async def results_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    chat_id = update.effective_chat.id
    learner = get_learner(chat_id, context)
    current_set = learner.session.state.current_set
    if context.args:
        set_id = context.args[0]
    elif current_set is not None:
        set_id = current_set.id
    else:
        await update.message.reply_text("Usage: /results <set id>")
        return

    try:
        questions = question_bank.list_questions(set_id)
    except QuestionBankError as e:
        logger.error(f"Could not load questions for results: {e}")
        await update.message.reply_text("⚠️ Could not load this question set.")
        return

    results_service = learner.results_service
    progress = await results_service.load_results(set_id, questions)
    if progress is None:
        await update.message.reply_text("No results found. Use /sets to start a set.")
        return
    await update.message.reply_text(format_results(progress, questions))

    if progress.has_pending_answers:
        async def on_all_verified(_progress: Progress):
            final = await results_service.load_results(set_id, questions)
            if final is not None:
                await context.bot.send_message(chat_id=chat_id, text=format_results(final, questions))

        await learner.results_poller.start(set_id, on_all_verified)


async def retry_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    if not context.args:
        await update.message.reply_text("Usage: /retry <set id>")
        return
    set_id = context.args[0]
    learner = get_learner(update.effective_chat.id, context)
    current_set = learner.session.state.current_set
    if current_set is not None and current_set.id == set_id:
        learner.session.exit_question_set()
    learner.results_poller.stop()
    await learner.results_service.retry_set(set_id)
    await update.message.reply_text(f"🔄 Progress for set {set_id} cleared. Use /begin {set_id} to start over.")


async def progress_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    learner = get_learner(update.effective_chat.id, context)
    all_progress = await learner.storage.get_all_progress()
    if not all_progress:
        await update.message.reply_text("No saved attempts.")
        return
    lines = ["💾 Saved attempts:\n"]
    for progress in all_progress:
        status = "completed" if progress.completed_at else f"at question {progress.current_question_index + 1}"
        lines.append(f"• Set {progress.set_id}: {len(progress.answers)} answer(s), {status}")
    await update.message.reply_text("\n".join(lines))


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    text = (
        "/sets - List question sets\n"
        "/begin <id> - Start or resume a set\n"
        "(photo) - Submit your solution for the current question\n"
        "/next, /prev - Move between questions\n"
        "/results [id] - Show your score\n"
        "/retry <id> - Clear a set's progress\n"
        "/progress - Show saved attempts\n"
        "/exit - Leave the current set"
    )
    await update.message.reply_text(text)


def create_app():
    global verifier
    token = config.TELEGRAM_BOT_TOKEN
    if not token:
        raise ValueError("TELEGRAM_BOT_TOKEN not found in environment variables.")

    # Initialize the verifier here after env vars are loaded
    verifier = SolutionVerifier()

    app = ApplicationBuilder().token(token).post_init(post_init).build()

    app.add_handler(CommandHandler("start", start))
    app.add_handler(CommandHandler("sets", sets_command))
    app.add_handler(CommandHandler("begin", begin_command))
    app.add_handler(CommandHandler("next", next_command))
    app.add_handler(CommandHandler("prev", prev_command))
    app.add_handler(CommandHandler("exit", exit_command))
    app.add_handler(CommandHandler("results", results_command))
    app.add_handler(CommandHandler("retry", retry_command))
    app.add_handler(CommandHandler("progress", progress_command))
    app.add_handler(CommandHandler("help", help_command))

    app.add_handler(MessageHandler(filters.PHOTO, handle_photo))

    return app
