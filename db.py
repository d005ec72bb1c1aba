import sqlite3
import os
import json
import logging
from typing import List, Optional, Tuple

import config

logger = logging.getLogger(__name__)

DB_PATH = config.DB_PATH
QUESTIONS_JSON_PATH = config.QUESTIONS_JSON_PATH


def get_connection():
    # Ensure the directory exists (crucial for cloud volumes)
    db_dir = os.path.dirname(DB_PATH)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)
    return sqlite3.connect(DB_PATH)


def create_tables():
    conn = get_connection()
    try:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS question_sets (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                description TEXT NOT NULL,
                subject TEXT NOT NULL,
                grade TEXT NOT NULL,
                total_questions INTEGER NOT NULL,
                estimated_time INTEGER NOT NULL,
                difficulty TEXT NOT NULL,
                icon TEXT,
                color TEXT
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS questions (
                id TEXT PRIMARY KEY,
                set_id TEXT NOT NULL REFERENCES question_sets(id),
                "order" INTEGER NOT NULL,
                text TEXT NOT NULL,
                type TEXT NOT NULL,
                difficulty TEXT NOT NULL,
                points INTEGER NOT NULL,
                image_url TEXT,
                options TEXT,
                correct_answer TEXT
            )
        """)
        conn.commit()
    finally:
        conn.close()


def seed_question_bank(json_path: Optional[str] = None):
    """Seeds the question bank from the JSON file if the question_sets table is empty."""
    json_path = json_path or QUESTIONS_JSON_PATH
    conn = get_connection()
    try:
        cursor = conn.cursor()

        cursor.execute("SELECT COUNT(*) FROM question_sets")
        if cursor.fetchone()[0] > 0:
            return

        if not os.path.exists(json_path):
            logger.warning(f"{json_path} not found. No question sets seeded.")
            return

        with open(json_path, 'r') as f:
            data = json.load(f)

        for qs in data:
            questions = qs.get('questions', [])
            cursor.execute("""
                INSERT INTO question_sets (id, title, description, subject, grade, total_questions,
                                           estimated_time, difficulty, icon, color)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (str(qs['id']), qs['title'], qs['description'], qs['subject'], qs['grade'],
                  len(questions), qs['estimated_time'], qs['difficulty'], qs.get('icon'), qs.get('color')))

            for order, q in enumerate(questions, start=1):
                options = q.get('options')
                cursor.execute("""
                    INSERT INTO questions (id, set_id, "order", text, type, difficulty, points,
                                           image_url, options, correct_answer)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (str(q['id']), str(qs['id']), q.get('order', order), q['text'], q['type'],
                      q['difficulty'], q['points'], q.get('image_url'),
                      json.dumps(options) if options is not None else None, q.get('correct_answer')))

        conn.commit()
        logger.info(f"Seeded {len(data)} question sets from JSON.")
    finally:
        conn.close()


def init_db():
    create_tables()
    seed_question_bank()


# --- key/value store backing learner progress ---

def kv_get(key: str) -> Optional[str]:
    conn = get_connection()
    try:
        cursor = conn.cursor()
        cursor.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
        row = cursor.fetchone()
        return row[0] if row else None
    finally:
        conn.close()


def kv_set(key: str, value: str):
    conn = get_connection()
    try:
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO kv_store (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
        """, (key, value))
        conn.commit()
    finally:
        conn.close()


def kv_delete(key: str):
    conn = get_connection()
    try:
        cursor = conn.cursor()
        cursor.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        conn.commit()
    finally:
        conn.close()


def _prefix_pattern(prefix: str) -> str:
    escaped = prefix.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')
    return escaped + '%'


def kv_items(prefix: str) -> List[Tuple[str, str]]:
    conn = get_connection()
    try:
        cursor = conn.cursor()
        cursor.execute("SELECT key, value FROM kv_store WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
                       (_prefix_pattern(prefix),))
        return cursor.fetchall()
    finally:
        conn.close()


def kv_delete_prefix(prefix: str) -> int:
    conn = get_connection()
    try:
        cursor = conn.cursor()
        cursor.execute("DELETE FROM kv_store WHERE key LIKE ? ESCAPE '\\'", (_prefix_pattern(prefix),))
        conn.commit()
        return cursor.rowcount
    finally:
        conn.close()


if __name__ == "__main__":
    init_db()
    print("Database initialized and question bank seeded.")
