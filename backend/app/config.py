"""
Configuration - env vars, constants, API key setup.
"""

import os
import logging
from pathlib import Path
from dotenv import load_dotenv
import google.generativeai as genai

ROOT_DIR = Path(__file__).parent.parent
load_dotenv(ROOT_DIR / '.env')

# Logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("examforge")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"⚠️ Invalid integer for {name}={raw!r}, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"⚠️ Invalid number for {name}={raw!r}, using {default}")
        return default


# ============ DATABASE ============
MONGO_URL = os.environ.get("MONGO_URL", "mongodb://localhost:27017")
DB_NAME = os.environ.get("DB_NAME", "examforge")

# ============ LLM ============
GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY")
GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-2.5-flash")
AI_CALL_TIMEOUT_SECONDS = _env_float("AI_CALL_TIMEOUT_SECONDS", 120.0)

if not GEMINI_API_KEY:
    logger.warning("⚠️ No GEMINI_API_KEY found - AI extraction and grading will fail")
else:
    genai.configure(api_key=GEMINI_API_KEY)

# Prompt overrides (empty means built-in default)
PROMPT_TEMPLATE = os.environ.get("PROMPT_TEMPLATE", "")
GRADING_PROMPT_TEMPLATE = os.environ.get("GRADING_PROMPT_TEMPLATE", "")

# ============ IMPORT PIPELINE ============
DEFAULT_IMPORT_MODE = os.environ.get("DEFAULT_IMPORT_MODE", "text")
MAX_CHUNK_CHARS = _env_int("MAX_CHUNK_CHARS", 6000)
CHUNK_OVERLAP_CHARS = _env_int("CHUNK_OVERLAP_CHARS", 300)
MIN_CHUNK_CHARS = _env_int("MIN_CHUNK_CHARS", 1800)
INCOMPLETE_LOOKAHEAD_CHARS = _env_int("INCOMPLETE_LOOKAHEAD_CHARS", 600)
VISION_MAX_ATTEMPTS = _env_int("VISION_MAX_ATTEMPTS", 2)
VISION_RETRY_DELAY_SECONDS = _env_float("VISION_RETRY_DELAY_SECONDS", 1.0)

# ============ PROGRESS LOGS ============
IMPORT_LOG_CAP = _env_int("IMPORT_LOG_CAP", 200)
SUBMISSION_LOG_CAP = _env_int("SUBMISSION_LOG_CAP", 100)
STREAM_POLL_SECONDS = _env_float("STREAM_POLL_SECONDS", 1.0)
STREAM_HEARTBEAT_SECONDS = _env_float("STREAM_HEARTBEAT_SECONDS", 15.0)

# ============ GRADING ============
SUBMISSION_TIMEOUT_SECONDS = _env_float("SUBMISSION_TIMEOUT_SECONDS", 300.0)
REVIEW_CONFIDENCE_THRESHOLD = _env_float("REVIEW_CONFIDENCE_THRESHOLD", 0.8)
AUTO_GRADE_CONFIDENCE_THRESHOLD = _env_float("AUTO_GRADE_CONFIDENCE_THRESHOLD", 0.9)
FALLBACK_CONFIDENCE = 0.3

# ============ HTTP ============
_cors_env = os.environ.get("CORS_ORIGINS")
CORS_ORIGINS = [origin.strip() for origin in _cors_env.split(",")] if _cors_env else [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


def get_llm_api_key():
    """Get the LLM API key from environment variables."""
    return GEMINI_API_KEY


def get_version_info():
    """Get deployment version information."""
    git_commit = os.environ.get("GIT_COMMIT_SHA")
    if not git_commit:
        try:
            if os.path.exists(".git_commit"):
                with open(".git_commit", "r") as f:
                    git_commit = f.read().strip()
        except OSError:
            pass

    if not git_commit:
        logger.warning("GIT_COMMIT_SHA not set and .git_commit not found. Build pipeline issue?")
        git_commit = "unknown"

    build_time = os.environ.get("BUILD_TIME", "unknown")
    env = os.environ.get("ENV", os.environ.get("ENVIRONMENT", "development"))

    return {
        "git_commit": git_commit,
        "build_time": build_time,
        "environment": env
    }
