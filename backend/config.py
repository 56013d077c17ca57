import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./rewards.db")
ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "")
CRON_SECRET = os.getenv("CRON_SECRET", "")
OUTPUT_DIR = os.getenv("OUTPUT_DIR", "/tmp/rewards_reports")
APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:8000")

# Reward program rules
REQUIRED_HASHTAG = os.getenv("REQUIRED_HASHTAG", "#trythemoon")
MIN_DURATION_SECONDS = int(os.getenv("MIN_DURATION_SECONDS", "15"))
TIKTOK_MIN_VIEWS = int(os.getenv("TIKTOK_MIN_VIEWS", "5000"))
YOUTUBE_MIN_VIEWS = int(os.getenv("YOUTUBE_MIN_VIEWS", "10000"))
MAX_POSTS_PER_DAY = int(os.getenv("MAX_POSTS_PER_DAY", "3"))
REWARD_UNIT = int(os.getenv("REWARD_UNIT", "100"))
TOTAL_BUDGET = int(os.getenv("TOTAL_BUDGET", "50000"))


def validate_config() -> None:
    """Fail fast on startup if a reward rule is missing or nonsensical."""
    required = {
        "REQUIRED_HASHTAG": REQUIRED_HASHTAG,
        "MIN_DURATION_SECONDS": MIN_DURATION_SECONDS,
        "TIKTOK_MIN_VIEWS": TIKTOK_MIN_VIEWS,
        "YOUTUBE_MIN_VIEWS": YOUTUBE_MIN_VIEWS,
        "MAX_POSTS_PER_DAY": MAX_POSTS_PER_DAY,
        "REWARD_UNIT": REWARD_UNIT,
        "TOTAL_BUDGET": TOTAL_BUDGET,
    }
    invalid = [
        name for name, value in required.items()
        if not value or (isinstance(value, int) and value <= 0)
    ]
    if invalid:
        raise RuntimeError(
            f"Invalid reward configuration: {', '.join(invalid)}. "
            "Set positive values in the environment or .env file."
        )
