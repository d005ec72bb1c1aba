import os
from dotenv import load_dotenv
# Load environment variables before any other imports
load_dotenv()

import logging
from db import init_db
from telegram_bot import create_app, poll_scheduler

# Configure logging
logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=logging.INFO
)


def main():
    # 1. Initialize DB (progress store + question bank)
    print("Initializing Database...")
    init_db()

    # 2. Create Bot Application
    print("Creating Bot Application...")
    application = create_app()

    # 3. Run Bot; the polling scheduler starts on the first verification poll
    print("Bot is polling...")
    try:
        application.run_polling()
    finally:
        if poll_scheduler.running:
            poll_scheduler.shutdown(wait=False)


if __name__ == "__main__":
    # Ensure env vars are set
    if not os.getenv("TELEGRAM_BOT_TOKEN"):
        print("Error: TELEGRAM_BOT_TOKEN is not set.")
    elif not os.getenv("OPENAI_API_KEY"):
        print("Error: OPENAI_API_KEY is not set.")
    else:
        main()
