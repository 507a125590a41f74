# Constants for the recommendation pipeline.
DEFAULT_LIMIT = 4  # Recommendations returned when the caller gives no limit
MAX_LIMIT = 50  # Upper bound accepted by the API
OVERSAMPLE_FACTOR = 2  # Candidate pool = limit * OVERSAMPLE_FACTOR

# Ranking acceptance: fewer valid ids than min(MIN_RANKED_IDS, limit) means the ranking failed
MIN_RANKED_IDS = 2

# Ollama generation options (fixed, not per-request)
RANK_TEMPERATURE = 0.1
RANK_NUM_PREDICT = 100
WARMUP_TEMPERATURE = 0.0
WARMUP_NUM_PREDICT = 10

# Prompt sizing
DESC_SNIPPET_CHARS = 100
