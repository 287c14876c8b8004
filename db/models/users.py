from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from db.database import Base, utcnow

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    student_name = Column(String(150))
    phone = Column(String(20))
    password_hash = Column(String(255), nullable=True)  # null until the student sets a password
    role = Column(String(50), default="student")  # student / admin

    batch_id = Column(Integer, ForeignKey("batches.id"), nullable=True)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=True)
    account_status = Column(String(20), default="active")  # active / suspended
    created_at = Column(DateTime(timezone=True), default=utcnow)

    batch = relationship("Batch")
