import os
from dotenv import load_dotenv

# Загружаем переменные окружения
load_dotenv()

# ─── Storage ───────────────────────────────────────────────────────────────────
SESSION_STORE_BACKEND  = os.getenv("SESSION_STORE_BACKEND", "firestore")
COOPERATIVE_COLLECTION = os.getenv("COOPERATIVE_COLLECTION", "cooperative_games")

# ─── Sessions ──────────────────────────────────────────────────────────────────
ROOM_CODE_MAX_ATTEMPTS = int(os.getenv("ROOM_CODE_MAX_ATTEMPTS", "10"))
DEFAULT_MAX_PLAYERS    = int(os.getenv("DEFAULT_MAX_PLAYERS", "4"))

# ─── Client reconnection ───────────────────────────────────────────────────────
RECONNECT_BACKOFF_SEC  = float(os.getenv("RECONNECT_BACKOFF_SEC", "3.0"))
RECONNECT_MAX_ATTEMPTS = int(os.getenv("RECONNECT_MAX_ATTEMPTS", "3"))

# как часто проверяем, что listener Firestore ещё жив
LISTENER_CHECK_SEC     = float(os.getenv("LISTENER_CHECK_SEC", "2.0"))

# ─── Misc ──────────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT      = int(os.getenv("PORT", "8000"))
