"""Configuration management for the document ingestion service."""
import math
import os
import logging
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_int(name: str, default: int) -> int:
    """Read an integer from the environment, falling back on missing or bad values."""
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    """Read a float from the environment, falling back on missing or bad values."""
    try:
        value = float(os.getenv(name, str(default)))
    except ValueError:
        return default
    return value if math.isfinite(value) else default


# API Keys
GROQ_API_KEY = os.getenv("GROQ_API_KEY")
HUGGINGFACE_API_KEY = os.getenv("HUGGINGFACE_API_KEY")
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")

# Server Configuration
PORT = _env_int("PORT", 8000)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
MAX_UPLOAD_MB = _env_int("MAX_UPLOAD_MB", 20)

# CORS Configuration
CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:3001"
).split(",")

# Model Configuration
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "sentence-transformers/all-mpnet-base-v2")
EMBEDDING_BATCH_SIZE = _env_int("EMBEDDING_BATCH_SIZE", 32)
PARSE_MODEL = os.getenv("PARSE_MODEL", "llama-3.3-70b-versatile")
LLM_MAX_TOKENS = _env_int("LLM_MAX_TOKENS", 8000)

# Structure analysis
STRUCTURE_PAGE_SUMMARY_LENGTH = _env_int("STRUCTURE_PAGE_SUMMARY_LENGTH", 500)
SHORT_DOCUMENT_THRESHOLD = _env_int("SHORT_DOCUMENT_THRESHOLD", 5)

# Section extraction
SECTION_OVERLAP_PAGES = _env_int("SECTION_OVERLAP_PAGES", 2)
SECTION_MAX_PAGES = _env_int("SECTION_MAX_PAGES", 15)
SECTION_BATCH_PAGES = _env_int("SECTION_BATCH_PAGES", 12)
SECTION_BATCH_OVERLAP_PAGES = _env_int("SECTION_BATCH_OVERLAP_PAGES", 3)
SECTION_CONCURRENCY = _env_int("SECTION_CONCURRENCY", 3)

# Question parsing
QUESTION_PAGE_BATCH_SIZE = _env_int("QUESTION_PAGE_BATCH_SIZE", 10)

# Deduplication and persistence
DEDUP_SIMILARITY_THRESHOLD = _env_float("DEDUP_SIMILARITY_THRESHOLD", 0.92)
SAVE_BATCH_SIZE = _env_int("SAVE_BATCH_SIZE", 20)
MAX_PARENT_RESOLUTION_PASSES = _env_int("MAX_PARENT_RESOLUTION_PASSES", 10)

# Outline generation
LOCAL_OUTLINE_THRESHOLD = _env_int("LOCAL_OUTLINE_THRESHOLD", 10)

# Logging Configuration
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
