import os
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip().upper() for item in raw.split(",") if item.strip()]


# --- Market data ---
BINANCE_API_BASE = os.getenv("BINANCE_API_BASE", "https://api.binance.com/api/v3")
BINANCE_WS_BASE = os.getenv("BINANCE_WS_BASE", "wss://stream.binance.com:9443")
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))
WS_RECONNECT_SECONDS = float(os.getenv("WS_RECONNECT_SECONDS", "2"))

SYMBOLS: List[str] = _env_list(
    "SYMBOLS", "BTCUSDT,ETHUSDT,SOLUSDT,BNBUSDT,XRPUSDT,DOGEUSDT,PEPEUSDT"
)
DEFAULT_SYMBOL = os.getenv("DEFAULT_SYMBOL", SYMBOLS[0])

# 1m is the live (streamed) timeframe, the others are fetched on each scan
PRIMARY_INTERVAL = os.getenv("PRIMARY_INTERVAL", "1m")
CONTEXT_INTERVALS: List[str] = [
    i.strip() for i in os.getenv("CONTEXT_INTERVALS", "5m,15m").split(",") if i.strip()
]
HISTORY_LIMIT = int(os.getenv("HISTORY_LIMIT", "100"))
CONTEXT_HISTORY_LIMIT = int(os.getenv("CONTEXT_HISTORY_LIMIT", "50"))
CANDLE_BUFFER_SIZE = int(os.getenv("CANDLE_BUFFER_SIZE", "200"))

# --- Indicators ---
MIN_CANDLES = int(os.getenv("MIN_CANDLES", "30"))
RSI_PERIOD = int(os.getenv("RSI_PERIOD", "14"))
BB_PERIOD = int(os.getenv("BB_PERIOD", "20"))
BB_MULTIPLIER = float(os.getenv("BB_MULTIPLIER", "2"))
ATR_PERIOD = int(os.getenv("ATR_PERIOD", "14"))
KALMAN_R = float(os.getenv("KALMAN_R", "0.1"))
KALMAN_Q = float(os.getenv("KALMAN_Q", "0.1"))
KELLY_REWARD_RISK = float(os.getenv("KELLY_REWARD_RISK", "1.5"))

# --- Account & risk ---
INITIAL_BALANCE = float(os.getenv("INITIAL_BALANCE", "100"))
TRADING_FEE_RATE = float(os.getenv("TRADING_FEE_RATE", "0.0005"))
TRAILING_STOP_GAP = float(os.getenv("TRAILING_STOP_GAP", "0.003"))
LIQUIDATION_THRESHOLD = float(os.getenv("LIQUIDATION_THRESHOLD", "0.9"))
DEFAULT_MARGIN_FRACTION = float(os.getenv("DEFAULT_MARGIN_FRACTION", "0.20"))
MIN_MARGIN = float(os.getenv("MIN_MARGIN", "5"))
MAX_MARGIN = float(os.getenv("MAX_MARGIN", "20"))
MIN_LEVERAGE = 1
MAX_LEVERAGE = 20

# --- Signal gate ---
CONFIDENCE_FLOOR = float(os.getenv("CONFIDENCE_FLOOR", "70"))
MIN_TARGET_DISTANCE = float(os.getenv("MIN_TARGET_DISTANCE", "0.0005"))
FALLBACK_STOP_PCT = float(os.getenv("FALLBACK_STOP_PCT", "0.005"))
FALLBACK_TAKE_PROFIT_PCT = float(os.getenv("FALLBACK_TAKE_PROFIT_PCT", "0.01"))

# --- Scheduler (seconds) ---
MIN_AI_INTERVAL_SECONDS = float(os.getenv("MIN_AI_INTERVAL_SECONDS", "10"))
WARMUP_SECONDS = float(os.getenv("WARMUP_SECONDS", "1.5"))
HISTORY_RETRY_SECONDS = float(os.getenv("HISTORY_RETRY_SECONDS", "2"))
ACTIVE_POSITION_ROTATE_SECONDS = float(os.getenv("ACTIVE_POSITION_ROTATE_SECONDS", "3"))
NO_DATA_ROTATE_SECONDS = float(os.getenv("NO_DATA_ROTATE_SECONDS", "2"))
NO_SIGNAL_ROTATE_SECONDS = float(os.getenv("NO_SIGNAL_ROTATE_SECONDS", "3"))
INSUFFICIENT_BALANCE_ROTATE_SECONDS = float(
    os.getenv("INSUFFICIENT_BALANCE_ROTATE_SECONDS", "4")
)
EXECUTION_DWELL_SECONDS = float(os.getenv("EXECUTION_DWELL_SECONDS", "6"))
RATE_LIMIT_COOLDOWN_SECONDS = float(os.getenv("RATE_LIMIT_COOLDOWN_SECONDS", "60"))
AUTO_MODE = os.getenv("AUTO_MODE", "true").lower() == "true"

# --- Signal generator (LLM) ---
LLM_API_KEY = os.getenv("LLM_API_KEY", "")
LLM_BASE_URL = os.getenv("LLM_BASE_URL", "https://api.deepseek.com/v1/chat/completions")
LLM_MODEL = os.getenv("LLM_MODEL", "deepseek-chat")
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.1"))
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))
HISTORY_IN_PROMPT = int(os.getenv("HISTORY_IN_PROMPT", "10"))

# --- Persistence ---
DATA_DIR = os.getenv("DATA_DIR", "/data")
STATE_FILE = os.path.join(DATA_DIR, "paper_account.json")
