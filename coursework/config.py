import os
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = os.path.dirname(os.path.dirname(__file__))

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///" + os.path.join(BASE_DIR, "coursework.db"))
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

OPTIONS = ("A", "B", "C", "D")

DEFAULT_EXAM_DURATION_MINUTES = int(os.getenv("DEFAULT_EXAM_DURATION_MINUTES", "180"))
AUTOSAVE_INTERVAL_SECONDS = float(os.getenv("AUTOSAVE_INTERVAL_SECONDS", "30"))
LOW_TIME_WARNING_SECONDS = int(os.getenv("LOW_TIME_WARNING_SECONDS", "300"))

PORTAL_API_URL = os.getenv("PORTAL_API_URL", "http://localhost:8000")
PORTAL_API_TIMEOUT_SECONDS = float(os.getenv("PORTAL_API_TIMEOUT_SECONDS", "15"))
