"""Internal constants shared across the library."""

USER_AGENT = "creditsync/1 (+aiohttp)"

DEFAULT_TABLE = "subscriptions"
DEFAULT_TOPIC_PREFIX = "subscriptions"
DECREMENT_RPC = "decrement_credits"

#: Credits granted to an identity that has no subscription record yet.
TRIAL_CREDITS = 1

#: Credits granted per billing period; balances display as ``n / 50``.
CREDITS_PER_PERIOD = 50
