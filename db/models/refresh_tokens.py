from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from db.database import Base, utcnow

class RefreshToken(Base):
    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    token = Column(String(512), unique=True, nullable=False)
    issued_at = Column(DateTime(timezone=True), default=utcnow)
