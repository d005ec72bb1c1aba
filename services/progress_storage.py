import asyncio
import json
import logging
import sqlite3
from typing import Callable, Dict, List, Optional

import db
from models import Progress, QuestionSetProgress

PROGRESS_KEY_PREFIX = "progress_"
SET_PROGRESS_KEY_PREFIX = "set_progress_"

# JSON decoding problems and missing fields are treated like storage failures.
STORAGE_ERRORS = (sqlite3.Error, ValueError, KeyError, TypeError)


class ProgressStorage:
    """
    Durable store for Progress and QuestionSetProgress records.

    With a `user_id` every key is scoped to that learner
    (`progress_<user>:<set>`), so learners never see each other's records.
    Without one, keys are `progress_<set>` and the listing and clear-all
    operations cover every record in the store.

    Failures are logged and swallowed here: reads fall back to "no data",
    writes are dropped. Callers never see a storage exception.
    """

    def __init__(self, user_id: Optional[str] = None):
        self.logger = logging.getLogger(__name__)
        self.user_id = user_id
        self._locks: Dict[str, asyncio.Lock] = {}

    def _scope(self) -> str:
        return f"{self.user_id}:" if self.user_id is not None else ""

    def _progress_key(self, set_id: str) -> str:
        return f"{PROGRESS_KEY_PREFIX}{self._scope()}{set_id}"

    def _set_progress_key(self, set_id: str) -> str:
        return f"{SET_PROGRESS_KEY_PREFIX}{self._scope()}{set_id}"

    def _lock_for(self, set_id: str) -> asyncio.Lock:
        lock = self._locks.get(set_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[set_id] = lock
        return lock

    # --- Progress ---

    async def save_progress(self, progress: Progress) -> None:
        try:
            key = self._progress_key(progress.set_id)
            await asyncio.to_thread(db.kv_set, key, json.dumps(progress.to_dict()))
        except STORAGE_ERRORS as e:
            self.logger.error(f"Error saving progress: {e}", exc_info=True)

    async def get_progress(self, set_id: str) -> Optional[Progress]:
        try:
            data = await asyncio.to_thread(db.kv_get, self._progress_key(set_id))
            return Progress.from_dict(json.loads(data)) if data else None
        except STORAGE_ERRORS as e:
            self.logger.error(f"Error getting progress: {e}", exc_info=True)
            return None

    async def clear_progress(self, set_id: str) -> None:
        try:
            await asyncio.to_thread(db.kv_delete, self._progress_key(set_id))
        except STORAGE_ERRORS as e:
            self.logger.error(f"Error clearing progress: {e}", exc_info=True)

    async def update_progress(self, set_id: str,
                              mutate: Callable[[Progress], Progress]) -> Optional[Progress]:
        """
        Read-modify-write of the stored Progress for `set_id`.

        Updates for the same set run one after another in arrival order, so
        each one reads the result of the previous write. Returns the written
        Progress, or None when nothing is stored (nothing is written then).
        `mutate` may return its argument unchanged to skip the write.
        """
        async with self._lock_for(set_id):
            progress = await self.get_progress(set_id)
            if progress is None:
                return None
            updated = mutate(progress)
            if updated is not progress:
                await self.save_progress(updated)
            return updated

    async def get_all_progress(self) -> List[Progress]:
        try:
            rows = await asyncio.to_thread(db.kv_items, self._progress_key(""))
            return [
                Progress.from_dict(json.loads(value))
                for key, value in rows
                if value and not key.startswith(SET_PROGRESS_KEY_PREFIX)
            ]
        except STORAGE_ERRORS as e:
            self.logger.error(f"Error getting all progress: {e}", exc_info=True)
            return []

    # --- QuestionSetProgress (rollups) ---

    async def save_set_progress(self, set_progress: QuestionSetProgress) -> None:
        try:
            key = self._set_progress_key(set_progress.set_id)
            await asyncio.to_thread(db.kv_set, key, json.dumps(set_progress.to_dict()))
        except STORAGE_ERRORS as e:
            self.logger.error(f"Error saving set progress: {e}", exc_info=True)

    async def get_set_progress(self, set_id: str) -> Optional[QuestionSetProgress]:
        try:
            data = await asyncio.to_thread(db.kv_get, self._set_progress_key(set_id))
            return QuestionSetProgress.from_dict(json.loads(data)) if data else None
        except STORAGE_ERRORS as e:
            self.logger.error(f"Error getting set progress: {e}", exc_info=True)
            return None

    async def get_all_set_progress(self) -> List[QuestionSetProgress]:
        try:
            rows = await asyncio.to_thread(db.kv_items, self._set_progress_key(""))
            return [QuestionSetProgress.from_dict(json.loads(value)) for _, value in rows if value]
        except STORAGE_ERRORS as e:
            self.logger.error(f"Error getting all set progress: {e}", exc_info=True)
            return []

    async def clear_all_progress(self) -> None:
        try:
            await asyncio.to_thread(db.kv_delete_prefix, self._progress_key(""))
            await asyncio.to_thread(db.kv_delete_prefix, self._set_progress_key(""))
        except STORAGE_ERRORS as e:
            self.logger.error(f"Error clearing all progress: {e}", exc_info=True)
