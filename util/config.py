# util/config.py
import os

# ===== 基本設定 =====
APP_NAME = "Casino Game Server"
DATABASE_URL = os.getenv("DATABASE_URL")
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
TABLE_TZ = os.getenv("TABLE_TZ", "Asia/Seoul")

ALLOWED_ORIGINS = [
    o.strip()
    for o in os.getenv("ALLOWED_ORIGINS", "http://127.0.0.1:5500,http://localhost:5500").split(",")
    if o.strip()
]

PRIVILEGED_ROLES = ("admin", "superadmin")

# ===== 百家樂 (shared table) =====
BACCARAT_DECKS = int(os.getenv("BACCARAT_DECKS", "8"))
BACCARAT_RESHUFFLE_POINT = int(os.getenv("BACCARAT_RESHUFFLE_POINT", str(52 * 2)))
BACCARAT_BET_SECONDS = float(os.getenv("BACCARAT_BET_SECONDS", "16"))
BACCARAT_CLOSE_PAUSE = float(os.getenv("BACCARAT_CLOSE_PAUSE", "2"))
BACCARAT_CARD_INTERVAL = float(os.getenv("BACCARAT_CARD_INTERVAL", "1"))
BACCARAT_RESULT_PAUSE = float(os.getenv("BACCARAT_RESULT_PAUSE", "5"))
BACCARAT_NEXT_ROUND_PAUSE = float(os.getenv("BACCARAT_NEXT_ROUND_PAUSE", "3"))
BACCARAT_MIN_BET = int(os.getenv("BACCARAT_MIN_BET", "1000"))
BACCARAT_MAX_BET = int(os.getenv("BACCARAT_MAX_BET", "500000"))
BACKGROUND_MAX_ROUNDS = int(os.getenv("BACKGROUND_MAX_ROUNDS", "1000"))

# ===== 21 點 (per-player sessions) =====
BLACKJACK_RESHUFFLE_POINT = int(os.getenv("BLACKJACK_RESHUFFLE_POINT", "20"))
SESSION_IDLE_MINUTES = int(os.getenv("SESSION_IDLE_MINUTES", "30"))
SESSION_SWEEP_SECONDS = float(os.getenv("SESSION_SWEEP_SECONDS", "300"))
DEALER_TURN_BUDGET = float(os.getenv("DEALER_TURN_BUDGET", "30"))
DEALER_REVEAL_DELAY = float(os.getenv("DEALER_REVEAL_DELAY", "0.5"))
DEALER_CHECK_DELAY = float(os.getenv("DEALER_CHECK_DELAY", "1.5"))
DEALER_CARD_DELAY = float(os.getenv("DEALER_CARD_DELAY", "1.0"))
DEALER_FINISH_DELAY = float(os.getenv("DEALER_FINISH_DELAY", "0.5"))
