"""
Project-wide constants for the span labeling pipeline
"""  # noqa: D200, D212, D415

# ==============================================================================
# Operation and Template Defaults
# ==============================================================================

SPAN_LABELING_OPERATION = "span_labeling"
DEFAULT_TEMPLATE_VERSION = "v3"

# ==============================================================================
# Validation Defaults
# ==============================================================================

DEFAULT_MAX_SPANS = 60
MAX_SPANS_ABSOLUTE_LIMIT = 80
DEFAULT_MIN_CONFIDENCE = 0.5
DEFAULT_SPAN_CONFIDENCE = 0.7  # Used when a span omits or garbles confidence
DEFAULT_NON_TECHNICAL_WORD_LIMIT = 6

# Gemini is validated leniently: word limits off, low confidence floor
GEMINI_MIN_CONFIDENCE_CEILING = 0.2

# ==============================================================================
# Token Budgets
# ==============================================================================

TOKEN_ESTIMATION_BASE = 400
TOKEN_ESTIMATION_PER_SPAN = 25
MAX_TOKEN_RESPONSE_LIMIT = 4000
GEMINI_MAX_TOKENS = 16384  # Multi-paragraph prompts need the full window

# Two-pass split between free-text reasoning and schema structuring
TWO_PASS_REASONING_SHARE = 0.6
TWO_PASS_STRUCTURING_SHARE = 0.4

# ==============================================================================
# Streaming
# ==============================================================================

# Consumed-prefix size after which the channel compacts its backing list
STREAM_COMPACTION_THRESHOLD = 4096

# ==============================================================================
# Logging
# ==============================================================================

NOTES_PREVIEW_CHARS = 240
SPAN_SAMPLE_TEXT_CHARS = 80

# ==============================================================================
# Provider Endpoints and Request Defaults
# ==============================================================================

DEFAULT_GROQ_BASE_URL = "https://api.groq.com/openai/v1"
DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_TEMPERATURE = 0.1

# Model used when the configuration names none
DEFAULT_MODELS = {
    "groq": "llama-3.1-8b-instant",
    "qwen": "qwen/qwen3-32b",
    "openai": "gpt-4o",
    "gemini": "gemini-2.5-flash",
}

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
