from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from db.database import Base, utcnow

class StudentResponse(Base):
    __tablename__ = "student_responses"
    __table_args__ = (
        UniqueConstraint("user_id", "question_id", name="uq_student_responses_user_question"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    question_id = Column(Integer, ForeignKey("questions.id"), nullable=False)
    selected_option = Column(String(1), nullable=True)
    # null until scored, and stays null for unanswered questions
    is_correct = Column(Boolean, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
