import os

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


def _float(key: str, default: float) -> float:
    value = os.getenv(key)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


# Storage
DB_PATH = os.getenv('DB_PATH', os.path.join(BASE_DIR, 'data', 'learning.db'))
QUESTIONS_JSON_PATH = os.getenv('QUESTIONS_JSON_PATH', os.path.join(BASE_DIR, 'data', 'question_sets.json'))

# OpenAI / compatible API (empty base url means the official endpoint)
OPENAI_API_KEY = os.getenv('OPENAI_API_KEY', '')
OPENAI_BASE_URL = os.getenv('OPENAI_BASE_URL', '')
OPENAI_MODEL = os.getenv('OPENAI_MODEL', 'gpt-4o-mini')

# Verification and polling
VERIFICATION_TIMEOUT_SECONDS = _float('VERIFICATION_TIMEOUT_SECONDS', 60.0)
QUESTION_POLL_INTERVAL_SECONDS = _float('QUESTION_POLL_INTERVAL_SECONDS', 1.0)
SET_POLL_INTERVAL_SECONDS = _float('SET_POLL_INTERVAL_SECONDS', 2.0)

# Chat front-end
TELEGRAM_BOT_TOKEN = os.getenv('TELEGRAM_BOT_TOKEN', '')
