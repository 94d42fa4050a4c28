import os
from dotenv import load_dotenv

# Load .env before anything reads os.getenv
load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///cognitive.db")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN")
TELEGRAM_CHAT_ID = os.getenv("TELEGRAM_CHAT_ID")

# Optional AI text service; unset means the fixed fallback insight is used
INSIGHT_SERVICE_URL = os.getenv("INSIGHT_SERVICE_URL")

GOOGLE_FIT_API = os.getenv(
    "GOOGLE_FIT_API",
    "https://fitness.googleapis.com/fitness/v1/users/me/dataset:aggregate",
)
