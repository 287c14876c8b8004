import logging
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.models.exams import Exam
from db.models.questions import Question
from .errors import ExamNotFound, PersistenceFailure

logger = logging.getLogger(__name__)


class QuestionBank:
    """Read-only access to exams and their ordered questions."""

    def __init__(self, db: Session):
        self.db = db

    def get_exam(self, exam_id: int, active_only: bool = True) -> Exam:
        query = self.db.query(Exam).filter(Exam.id == exam_id)
        if active_only:
            query = query.filter(Exam.is_active.is_(True))

        exam = query.first()
        if not exam:
            raise ExamNotFound("Exam not found.")
        return exam

    def list_active_exams(self) -> List[Exam]:
        return (
            self.db.query(Exam)
            .filter(Exam.is_active.is_(True))
            .order_by(Exam.conducted_date.desc(), Exam.id.desc())
            .all()
        )

    def get_questions(self, exam_id: int) -> List[Question]:
        return (
            self.db.query(Question)
            .filter(Question.exam_id == exam_id)
            .order_by(Question.question_number.asc(), Question.id.asc())
            .all()
        )

    def get_question_ids(self, exam_id: int) -> List[int]:
        rows = (
            self.db.query(Question.id)
            .filter(Question.exam_id == exam_id)
            .order_by(Question.question_number.asc(), Question.id.asc())
            .all()
        )
        return [row.id for row in rows]

    def get_answer_key(self, exam_id: int) -> Dict[int, str]:
        """question_id -> correct option, in question order."""
        try:
            rows = (
                self.db.query(Question.id, Question.correct_option)
                .filter(Question.exam_id == exam_id)
                .order_by(Question.question_number.asc(), Question.id.asc())
                .all()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning("Answer key read failed for exam %s: %s", exam_id, e)
            raise PersistenceFailure(f"Failed to fetch questions: {e}") from e
        return {row.id: row.correct_option for row in rows}

    def get_attempt_paper(self, exam_id: int) -> Dict[str, object]:
        """Exam metadata and questions as served to an attempting student.

        Correct options are never included here.
        """
        exam = self.get_exam(exam_id)
        questions = self.get_questions(exam_id)
        if not questions:
            raise ExamNotFound("No questions found for this exam.")

        return {
            "exam_id": exam.id,
            "exam_name": exam.exam_name,
            "duration_minutes": exam.duration_minutes,
            "total_questions": len(questions),
            "questions": [question_to_dict(q) for q in questions],
        }


def question_to_dict(question: Question, include_answer: bool = False) -> Dict[str, Optional[str]]:
    data = {
        "question_id": question.id,
        "exam_id": question.exam_id,
        "question_number": question.question_number,
        "subject": question.subject,
        "question_text": question.question_text,
        "option_a": question.option_a,
        "option_b": question.option_b,
        "option_c": question.option_c,
        "option_d": question.option_d,
    }
    if include_answer:
        data["correct_option"] = question.correct_option
    return data
