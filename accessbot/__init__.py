"""Premium access lifecycle engine for a Telegram subscription group."""
