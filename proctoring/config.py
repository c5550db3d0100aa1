from dotenv import load_dotenv # type: ignore
import os
from pathlib import Path


# Load environment variables from .env file
load_dotenv()

# MongoDB
MONGODB_URL = os.getenv("MONGODB_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "Proctoring-Backend")

# Storage
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "local").lower()
DATA_DIR = Path(os.getenv("DATA_DIR", "data"))
VIDEO_DIR = DATA_DIR / "videos"
REPORT_DIR = DATA_DIR / "reports"
# Events the agent could not deliver before exiting, resent on the next run
SPOOL_DIR = DATA_DIR / "pending"

# Agent
BACKEND_URL = os.getenv("BACKEND_URL", "http://localhost:8000")
FLUSH_INTERVAL_SECONDS = float(os.getenv("FLUSH_INTERVAL_SECONDS", "3"))
FINAL_FLUSH_RETRIES = int(os.getenv("FINAL_FLUSH_RETRIES", "1"))
MAX_FPS = float(os.getenv("MAX_FPS", "24"))

# Reports
REPORT_SAMPLE_LIMIT = int(os.getenv("REPORT_SAMPLE_LIMIT", "50"))
EXPORT_SAMPLE_LIMIT = int(os.getenv("EXPORT_SAMPLE_LIMIT", "200"))

# JSON object of {"EVENT_TYPE": {"per_occurrence": int, "cap": int}} merged over the defaults
SCORING_RULES = os.getenv("SCORING_RULES")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
