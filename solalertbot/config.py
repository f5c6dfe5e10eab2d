import os
from dotenv import load_dotenv

load_dotenv()

def _flag(name: str) -> bool:
    # only an explicit "false" switches a channel off
    return os.getenv(name, "true").strip().lower() != "false"

# ---- Config / Env ----
DISCORD_TOKEN       = os.getenv("DISCORD_TOKEN", "").strip()
TELEGRAM_BOT_TOKEN  = os.getenv("TELEGRAM_BOT_TOKEN", "").strip()
SENDGRID_API_KEY    = os.getenv("SENDGRID_API_KEY", "").strip()
FROM_EMAIL          = os.getenv("FROM_EMAIL", "alerts@solana-alerts.com")
FROM_NAME           = os.getenv("FROM_NAME", "Solana Token Alerts")
FRONTEND_URL        = os.getenv("FRONTEND_URL", "http://localhost:3000")

DATABASE_URL        = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///alerts.db")
DB_ECHO             = os.getenv("DB_ECHO", "false").lower() == "true"

BIRDEYE_API_KEY     = os.getenv("BIRDEYE_API_KEY", "").strip()
MORALIS_API_KEY     = os.getenv("MORALIS_API_KEY", "").strip()
SOLANA_RPC          = os.getenv("SOLANA_RPC", "https://api.mainnet-beta.solana.com")

STREAM_API_KEY      = os.getenv("SOLANA_STREAMING_API_KEY", "").strip()
STREAM_URL          = os.getenv("STREAM_URL", "wss://api.solanastreaming.com")

LOG_LEVEL           = os.getenv("LOG_LEVEL", "INFO").upper()

ENABLE_EMAIL        = _flag("ENABLE_EMAIL_NOTIFICATIONS")
ENABLE_TELEGRAM     = _flag("ENABLE_TELEGRAM_NOTIFICATIONS")
ENABLE_DISCORD      = _flag("ENABLE_DISCORD_NOTIFICATIONS")

# ---- Upstream endpoints ----
BIRDEYE_MARKET_URL  = "https://public-api.birdeye.so/defi/v3/token/market-data"
MORALIS_META_URL    = "https://solana-gateway.moralis.io/token/mainnet/{address}/metadata"
DEX_TOKEN_URL       = "https://api.dexscreener.com/latest/dex/tokens/{address}"
JUPITER_PRICE_URL   = "https://price.jup.ag/v6/price?ids={mint}"
COINGECKO_SOL_URL   = "https://api.coingecko.com/api/v3/simple/price?ids=solana&vs_currencies=usd"
SENDGRID_URL        = "https://api.sendgrid.com/v3/mail/send"
DEX_BLACKLIST       = {"heaven"}

# ---- Schedules (seconds) ----
ALERT_SWEEP_SECONDS   = int(os.getenv("ALERT_SWEEP_SECONDS", "60"))
QUEUE_SWEEP_SECONDS   = int(os.getenv("QUEUE_SWEEP_SECONDS", "30"))
SOL_REFRESH_SECONDS   = int(os.getenv("SOL_REFRESH_SECONDS", "30"))
SOL_FRESH_SECONDS     = 120
CACHE_TTL_SECONDS     = int(os.getenv("CACHE_TTL_SECONDS", "30"))
CACHE_EVICT_SECONDS   = 60

# ---- Stream ----
STREAM_PING_SECONDS      = 30
STREAM_IDLE_TIMEOUT      = int(os.getenv("STREAM_IDLE_TIMEOUT", "90"))
STREAM_RECONNECT_DELAY   = 5
STREAM_MAX_RECONNECTS    = 5
STREAM_CONNECT_TIMEOUT   = 10

# ---- Notification queue ----
QUEUE_BATCH_SIZE    = 10
MAX_SEND_ATTEMPTS   = 3
