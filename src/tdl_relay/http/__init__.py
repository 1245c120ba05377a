"""HTTP adapters: Telegram Bot API and the subscription service."""
