from sqlalchemy import Column, Integer, String, Boolean
from db.database import Base

class Batch(Base):
    __tablename__ = "batches"

    id = Column(Integer, primary_key=True, index=True)
    batch_name = Column(String(50), nullable=False)  # rankers / sadhana / lakshya
    cost = Column(Integer, nullable=False)
    duration_months = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True)
