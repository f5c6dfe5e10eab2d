SOL_MINT = "So11111111111111111111111111111111111111112"

THRESHOLD_TYPES = ("price", "market_cap")
COMPARISONS     = ("above", "below")
CHANNELS        = ("email", "telegram", "discord")

QUEUE_PENDING = "pending"
QUEUE_SENT    = "sent"
QUEUE_FAILED  = "failed"
