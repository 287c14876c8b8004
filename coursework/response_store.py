"""Idempotent writes keyed on natural keys.

StudentResponse rows are keyed on (user_id, question_id) and ExamAttempt rows
on (user_id, exam_id). Both stores expose one ``put`` that inserts or
overwrites in a single statement (``INSERT ... ON CONFLICT DO UPDATE``), so
repeating a write never creates a second row.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.database import utcnow
from db.models.exam_attempts import ExamAttempt
from db.models.student_responses import StudentResponse
from .errors import PersistenceFailure

logger = logging.getLogger(__name__)


def _upsert(db: Session, model, rows: List[Dict[str, Any]], key_columns: Tuple[str, ...]):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        insert = postgresql.insert
    elif dialect == "sqlite":
        insert = sqlite.insert
    else:
        db.rollback()
        logger.warning("Upsert is not supported on %s", dialect)
        raise PersistenceFailure(f"Upsert is not supported on {dialect}")

    stmt = insert(model.__table__).values(rows)
    update_columns = {
        name: stmt.excluded[name]
        for name in rows[0].keys()
        if name not in key_columns
    }
    stmt = stmt.on_conflict_do_update(index_elements=list(key_columns), set_=update_columns)
    db.execute(stmt)


class ResponseStore:
    KEY = ("user_id", "question_id")

    def __init__(self, db: Session):
        self.db = db

    def put(self, key: Tuple[int, int], selected_option: Optional[str], is_correct: Optional[bool] = None, commit: bool = True):
        user_id, question_id = key
        self.put_many(user_id, [(question_id, selected_option, is_correct)], commit=commit)

    def put_many(self, user_id: int, entries: Iterable[Tuple[int, Optional[str], Optional[bool]]], commit: bool = True):
        now = utcnow()
        rows = [
            {
                "user_id": user_id,
                "question_id": question_id,
                "selected_option": selected_option,
                "is_correct": is_correct,
                "updated_at": now,
            }
            for question_id, selected_option, is_correct in entries
        ]
        if not rows:
            return

        try:
            _upsert(self.db, StudentResponse, rows, self.KEY)
            if commit:
                self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning("Response upsert failed for user %s: %s", user_id, e)
            raise PersistenceFailure(f"Failed to save responses: {e}") from e

    def get_responses(self, user_id: int, question_ids: List[int]) -> Dict[int, StudentResponse]:
        if not question_ids:
            return {}

        rows = (
            self.db.query(StudentResponse)
            .filter(
                StudentResponse.user_id == user_id,
                StudentResponse.question_id.in_(question_ids),
            )
            .populate_existing()
            .all()
        )
        return {row.question_id: row for row in rows}


class AttemptStore:
    KEY = ("user_id", "exam_id")

    def __init__(self, db: Session):
        self.db = db

    def put(self, key: Tuple[int, int], summary: Dict[str, Any], commit: bool = True) -> ExamAttempt:
        user_id, exam_id = key
        row = {"user_id": user_id, "exam_id": exam_id, **summary}

        try:
            _upsert(self.db, ExamAttempt, [row], self.KEY)
            if commit:
                self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning("Attempt upsert failed for user %s exam %s: %s", user_id, exam_id, e)
            raise PersistenceFailure(f"Failed to record exam attempt: {e}") from e

        return self.get(user_id, exam_id)

    def get(self, user_id: int, exam_id: int) -> Optional[ExamAttempt]:
        return (
            self.db.query(ExamAttempt)
            .filter(ExamAttempt.user_id == user_id, ExamAttempt.exam_id == exam_id)
            .populate_existing()
            .first()
        )

    def list_for_user(self, user_id: int) -> List[ExamAttempt]:
        return self.db.query(ExamAttempt).filter(ExamAttempt.user_id == user_id).all()
