from sqlalchemy import Column, Integer, String, Boolean, ForeignKey
from db.database import Base

class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    student_name = Column(String(150))
    email = Column(String(255), index=True)
    phone = Column(String(20))
    batch_id = Column(Integer, ForeignKey("batches.id"))
    amount_paid = Column(Integer)
    payment_status = Column(String(20), default="pending")  # success / pending / failed
    access_granted = Column(Boolean, default=False)
