from typing import Any, Dict, List

from sqlalchemy.orm import Session

from db.models.exam_attempts import ExamAttempt
from .errors import AttemptNotFound
from .question_bank import QuestionBank, question_to_dict
from .response_store import AttemptStore, ResponseStore


def attempt_to_dict(attempt: ExamAttempt) -> Dict[str, Any]:
    return {
        "exam_id": attempt.exam_id,
        "score": attempt.score,
        "total_questions": attempt.total_questions,
        "correct_answers": attempt.correct_answers,
        "wrong_answers": attempt.wrong_answers,
        "unanswered": attempt.unanswered,
        "started_at": attempt.started_at.isoformat() if attempt.started_at else None,
        "submitted_at": attempt.submitted_at.isoformat() if attempt.submitted_at else None,
        "time_taken_minutes": attempt.time_taken_minutes,
    }


def accuracy(attempt: ExamAttempt) -> int:
    if not attempt.total_questions:
        return 0
    return round(attempt.correct_answers / attempt.total_questions * 100)


def get_result(db: Session, user_id: int, exam_id: int) -> Dict[str, Any]:
    """Exam, attempt and a per-question review for the result page."""
    bank = QuestionBank(db)
    exam = bank.get_exam(exam_id, active_only=False)

    attempt = AttemptStore(db).get(user_id, exam_id)
    if not attempt:
        raise AttemptNotFound("No attempt found for this exam.")

    questions = bank.get_questions(exam_id)
    responses = ResponseStore(db).get_responses(user_id, [q.id for q in questions])

    review = []
    for question in questions:
        response = responses.get(question.id)
        review.append({
            "question": question_to_dict(question, include_answer=True),
            "response": {
                "selected_option": response.selected_option,
                "is_correct": response.is_correct,
            } if response else None,
        })

    return {
        "exam": {
            "exam_id": exam.id,
            "exam_name": exam.exam_name,
            "total_questions": exam.total_questions,
        },
        "attempt": attempt_to_dict(attempt),
        "accuracy": accuracy(attempt),
        "review": review,
    }


def list_tests(db: Session, user_id: int) -> List[Dict[str, Any]]:
    """Active exams, newest first, each with the student's current attempt."""
    exams = QuestionBank(db).list_active_exams()
    attempts = {a.exam_id: a for a in AttemptStore(db).list_for_user(user_id)}

    tests = []
    for exam in exams:
        attempt = attempts.get(exam.id)
        tests.append({
            "exam_id": exam.id,
            "exam_name": exam.exam_name,
            "total_questions": exam.total_questions,
            "duration_minutes": exam.duration_minutes,
            "conducted_date": exam.conducted_date.isoformat() if exam.conducted_date else None,
            "attempt": {
                "score": attempt.score,
                "total_questions": attempt.total_questions,
                "submitted_at": attempt.submitted_at.isoformat() if attempt.submitted_at else None,
            } if attempt else None,
        })
    return tests
