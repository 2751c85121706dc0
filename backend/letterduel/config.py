import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev")

    # CORS
    CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*")

    # Reverse proxy / IP headers
    TRUST_PROXY_HEADERS = os.environ.get("TRUST_PROXY_HEADERS", "1") == "1"

    # Remote judge (empty disables it; validation then runs locally)
    JUDGE_URL = os.environ.get("JUDGE_URL", "")
    JUDGE_TIMEOUT_SEC = float(os.environ.get("JUDGE_TIMEOUT_SEC", "5"))
    JUDGE_MAX_WORKERS = int(os.environ.get("JUDGE_MAX_WORKERS", "9"))

    # Game
    DEFAULT_TOTAL_ROUNDS = int(os.environ.get("DEFAULT_TOTAL_ROUNDS", "5"))
    MAX_TOTAL_ROUNDS = int(os.environ.get("MAX_TOTAL_ROUNDS", "20"))
    STOP_MIN_ELAPSED_SEC = int(os.environ.get("STOP_MIN_ELAPSED_SEC", "10"))
    ANSWER_DEBOUNCE_MS = int(os.environ.get("ANSWER_DEBOUNCE_MS", "300"))
    TICK_INTERVAL_SEC = float(os.environ.get("TICK_INTERVAL_SEC", "1.0"))
    MEMORY_WORD_COUNT = int(os.environ.get("MEMORY_WORD_COUNT", "5"))
    ROOM_CODE_LENGTH = int(os.environ.get("ROOM_CODE_LENGTH", "6"))
