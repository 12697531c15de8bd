import os
import logging
from dotenv import load_dotenv

load_dotenv()


def _api_key(env_name: str, placeholder: str):
    """Return API key or None if it is missing or left at its placeholder value"""
    value = os.getenv(env_name, "").strip()
    if not value or value == placeholder:
        return None
    return value


class Config:
    # Database Configuration
    DB_USER = os.getenv("DB_USER", "receipts")
    DB_PASS = os.getenv("DB_PASS", "receipts")
    DB_HOST = os.getenv("DB_HOST", "localhost")
    DB_PORT = os.getenv("DB_PORT", "5432")
    DB_NAME = os.getenv("DB_NAME", "receipts")

    @property
    def DATABASE_URL(self):
        # Prefer DATABASE_URL env var if set (for SQLite support)
        url = os.getenv("DATABASE_URL")
        if url:
            return url

        # Build PostgreSQL URL
        return f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASS}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # Where uploaded documents are stored; relative file paths resolve against it
    STORAGE_PATH = os.getenv("STORAGE_PATH", "/data/attachments")

    # OCR engine API keys (OPTIONAL - engine is skipped when not configured)
    OPENAI_API_KEY = _api_key("OPENAI_API_KEY", "openaiApiKey")
    CLAUDE_API_KEY = _api_key("CLAUDE_API_KEY", "claudeApiKey")
    GOOGLE_AI_API_KEY = _api_key("GOOGLE_AI_API_KEY", "googleAiApiKey")

    # Ollama Settings (OPTIONAL - local vision model)
    OLLAMA_HOST = os.getenv("OLLAMA_HOST", None)  # None = disabled
    OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llava")

    # Tesseract (local, last resort)
    TESSERACT_ENABLED = os.getenv("TESSERACT_ENABLED", "true").lower() in ("1", "true", "yes")
    TESSERACT_LANG = os.getenv("TESSERACT_LANG", "eng")

    # Engine priority, first available engine is the primary one
    OCR_ENGINE_ORDER = [
        x.strip().lower()
        for x in os.getenv("OCR_ENGINE_ORDER", "openai,claude,google,ollama,tesseract").split(",")
        if x.strip()
    ]

    # Seconds allowed for a single engine call, 0 disables the limit
    OCR_ENGINE_TIMEOUT = float(os.getenv("OCR_ENGINE_TIMEOUT", "60"))

    # Batch dispatch scheduler
    DISPATCH_INTERVAL_MINUTES = int(os.getenv("DISPATCH_INTERVAL_MINUTES", "15"))

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    @property
    def engine_timeout(self):
        """Engine call timeout in seconds or None when disabled"""
        return self.OCR_ENGINE_TIMEOUT if self.OCR_ENGINE_TIMEOUT > 0 else None


config = Config()

# Log configuration on startup
logging.info(f"Database: {config.DATABASE_URL.split('@')[1] if '@' in config.DATABASE_URL else 'SQLite'}")
logging.info(f"OCR engine order: {', '.join(config.OCR_ENGINE_ORDER)}")
logging.info(f"Ollama OCR: {'enabled' if config.OLLAMA_HOST else 'disabled'}")
