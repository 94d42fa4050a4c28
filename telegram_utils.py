import logging

import requests

from config import TELEGRAM_BOT_TOKEN, TELEGRAM_CHAT_ID

logger = logging.getLogger(__name__)

def send_telegram_message(text: str, token: str = TELEGRAM_BOT_TOKEN, chat_id: str = TELEGRAM_CHAT_ID) -> bool:
    if not token or not chat_id:
        logger.info("Telegram bot token or chat ID not set.")
        return False
    url = f"https://api.telegram.org/bot{token}/sendMessage"
    payload = {
        "chat_id": chat_id,
        "text": text,
        "parse_mode": "Markdown"
    }
    try:
        requests.post(url, data=payload, timeout=10)
    except requests.RequestException as e:
        logger.warning("Telegram send error: %s", e)
        return False
    return True

def format_report_for_telegram(summary: dict, insight: str) -> str:
    msg = f"*Weekly Cognitive Report* ({summary['report_date']})\n"
    msg += f"{insight}\n"
    msg += f"  - Avg score: {summary['average_score']}\n"
    msg += f"  - Deep work: {summary['total_deep_work']} h\n"
    msg += f"  - Study: {summary['total_study']} h\n"
    msg += f"  - Avg sleep: {summary['average_sleep']} h\n"
    msg += f"_Days logged:_ {summary['days']}\n"
    return msg

def format_snapshot_for_telegram(snapshot: dict) -> str:
    m = snapshot["metrics"]
    p = snapshot["progression"]
    msg = f"*Today ({snapshot['day']}):* score {m['score']}, burnout {m['burnoutRisk']}\n"
    msg += f"*Streak:* {p['streak']} days, level {p['level']}\n"
    msg += f"  - Sleep {m['sleep']} h, study {m['study']} h, screen {m['screenTime']} h\n"
    return msg
