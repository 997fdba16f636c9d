"""User-facing message constants."""  # noqa: D415

# ==============================================================================
# Synthetic error responses
# ==============================================================================

PROMPT_TOO_LONG_ERROR_MESSAGE = "Prompt is too long"
CREDIT_BALANCE_TOO_LOW_ERROR_MESSAGE = "Credit balance is too low"
INVALID_API_KEY_ERROR_MESSAGE = "Invalid API key · Please check your configuration"
API_ERROR_MESSAGE_PREFIX = "API Error"

# Substrings matched (case-insensitively) against provider error messages.
PROMPT_TOO_LONG_MARKER = "prompt is too long"
CREDIT_BALANCE_MARKER = "your credit balance is too low"
INVALID_API_KEY_MARKER = "x-api-key"

# ==============================================================================
# Responses
# ==============================================================================

NO_CONTENT_MESSAGE = "(no content)"

# Sampling per query kind.
MAIN_QUERY_TEMPERATURE = 1.0
SMALL_QUERY_TEMPERATURE = 0.0
SMALL_QUERY_MAX_TOKENS = 512

# API key verification: minimal request, few retries.
VERIFY_API_KEY_MAX_RETRIES = 2
VERIFY_API_KEY_PROMPT = "test"
