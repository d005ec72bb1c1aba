import json
import sqlite3
from typing import List, Optional

import db
from models import Question, QuestionSet

SET_COLUMNS = "id, title, description, subject, grade, total_questions, estimated_time, difficulty, icon, color"
QUESTION_COLUMNS = 'id, set_id, "order", text, type, difficulty, points, image_url, options, correct_answer'


class QuestionBankError(Exception):
    """Raised when question sets or questions cannot be read."""


def _row_to_question(row) -> Question:
    row_list = list(row)
    # options are stored as a JSON array (index 8)
    row_list[8] = json.loads(row_list[8]) if row_list[8] else None
    return Question(*row_list)


class QuestionBank:
    def list_question_sets(self) -> List[QuestionSet]:
        try:
            conn = db.get_connection()
            try:
                cursor = conn.cursor()
                cursor.execute(f"SELECT {SET_COLUMNS} FROM question_sets ORDER BY id")
                rows = cursor.fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise QuestionBankError(f"Could not list question sets: {e}") from e
        return [QuestionSet(*row) for row in rows]

    def get_question_set(self, set_id: str) -> Optional[QuestionSet]:
        for question_set in self.list_question_sets():
            if question_set.id == set_id:
                return question_set
        return None

    def list_questions(self, set_id: str) -> List[Question]:
        try:
            conn = db.get_connection()
            try:
                cursor = conn.cursor()
                cursor.execute(f'SELECT {QUESTION_COLUMNS} FROM questions WHERE set_id = ? ORDER BY "order" ASC',
                               (set_id,))
                return [_row_to_question(row) for row in cursor.fetchall()]
            finally:
                conn.close()
        except (sqlite3.Error, ValueError) as e:
            raise QuestionBankError(f"Could not list questions for set {set_id}: {e}") from e
