"""Domain layer of the Telegram chat AI bridge: update kinds, lookups, classifier."""
