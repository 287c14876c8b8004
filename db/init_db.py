# python db/init_db.py

from db.database import Base, engine
from db.models.users import User
from db.models.batches import Batch
from db.models.payments import Payment
from db.models.exams import Exam
from db.models.questions import Question
from db.models.student_responses import StudentResponse
from db.models.exam_attempts import ExamAttempt
from db.models.refresh_tokens import RefreshToken


def init_db():
    Base.metadata.create_all(bind=engine)


if __name__ == "__main__":
    print("Creating tables...")
    init_db()
    print("Done")
