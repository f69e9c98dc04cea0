from prometheus_client import Counter, Histogram

# Inbound updates by classified kind.
UPDATE_TOTAL = Counter(
    "telegram_updates_total",
    "Total number of Telegram updates processed",
    ["kind"],
)

# Command usage counts by command name ("unknown" for unmatched commands).
COMMAND_TOTAL = Counter(
    "telegram_commands_total",
    "Total number of Telegram commands processed",
    ["command"],
)

# Chats seen for the first time.
NEW_CHATS_TOTAL = Counter(
    "telegram_new_chats_total",
    "Total number of chats bootstrapped on first contact",
)

# Completion API call latency in seconds.
COMPLETION_LATENCY = Histogram(
    "completion_response_latency_seconds",
    "Time spent waiting for the completion API",
)

# Completion errors (remote failure or empty response).
COMPLETION_ERRORS = Counter(
    "completion_response_errors_total",
    "Total number of completion API errors",
    ["type"],
)

# Outbound sends that Telegram rejected or that never got a response.
DELIVERY_FAILURES = Counter(
    "telegram_delivery_failures_total",
    "Total number of failed outbound Telegram sends",
    ["method"],
)
