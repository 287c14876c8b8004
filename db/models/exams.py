from sqlalchemy import Column, Integer, String, Boolean, Date
from sqlalchemy.orm import relationship
from db.database import Base

class Exam(Base):
    __tablename__ = "exams"

    id = Column(Integer, primary_key=True, index=True)
    exam_name = Column(String(200), nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=180)
    total_questions = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    conducted_date = Column(Date)

    questions = relationship(
        "Question",
        back_populates="exam",
        order_by="Question.question_number",
    )
