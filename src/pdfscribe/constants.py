"""Centralized constants for pdfscribe.

This module contains the hardcoded thresholds and defaults used throughout
the pipeline. Grouping them here makes it easier to:
- Find and tune heuristic thresholds
- Understand system limits at a glance
- Keep defaults consistent between config and code
"""

from __future__ import annotations

# =============================================================================
# Page Classification
# =============================================================================

# Heuristics favor over-detection of scanned pages
SCANNED_EMPTY_PAGE_MIN_OPS = 50  # Empty page with this many ops is a scan
SCANNED_FEW_TEXT_ELEMENTS = 10  # "Very few" text elements
SCANNED_HEAVY_PAGE_MIN_OPS = 80  # Few text items with many operations
SCANNED_NON_TEXT_FRACTION = 0.6  # Mostly non-text content
SCANNED_SINGLE_IMAGE_MAX_TEXT_OPS = 5  # Single large image with minimal text
SCANNED_SINGLE_IMAGE_MIN_OPS = 40

# =============================================================================
# Rendering
# =============================================================================

MIN_EMBEDDED_IMAGE_SIZE = 5  # px, smaller embedded images are rejected
SCANNED_PAGE_RENDER_SCALE = 2.0
DEFAULT_PAGE_RENDER_SCALE = 1.5

# Blankness check
WHITE_CHANNEL_THRESHOLD = 245  # channel < this counts as non-white
MIN_ALPHA = 10  # alpha > this counts as visible
MIN_NON_WHITE_FRACTION = 0.002  # 0.2% of pixels must be non-white
SMALL_IMAGE_EDGE = 30  # images under 30x30 use the small-image rule
SMALL_IMAGE_MIN_NON_WHITE = 5

# =============================================================================
# Content Organization
# =============================================================================

LINE_Y_TOLERANCE = 5.0
IMAGE_LOOKAHEAD_LINES = 2
IMAGE_TEXT_X_PROXIMITY = 50.0
IMAGE_ANCHOR_Y_PROXIMITY = 20.0

# =============================================================================
# Extraction
# =============================================================================

TRANSFORM_SEARCH_WINDOW = 15  # ops searched backward for an image transform
OBJECT_RESOLVE_MAX_RETRIES = 3
OBJECT_RESOLVE_BASE_DELAY = 0.05  # seconds, grows linearly per attempt
NATURAL_SCAN_MAX_TEXT_ELEMENTS = 10

IMAGE_PLACEHOLDER_FORMAT = "[IMAGE_{index}]"
PAGE_PLACEHOLDER_FORMAT = "[PAGE_IMAGE_{page}]"
IMAGE_ID_FORMAT = "img_{page}_{index}"
PAGE_IMAGE_ID_FORMAT = "page_{page}"
# Inserted after "[" in source text that already looks like a placeholder
PLACEHOLDER_ESCAPE = "\u2060"

# =============================================================================
# Deduplication
# =============================================================================

DEFAULT_SIMILARITY_THRESHOLD = 0.99
MAX_SIZE_RATIO = 1.1  # only compare images within 10% of each other
PIXEL_CHANNEL_TOLERANCE = 3
FULL_SAMPLING_MAX_PIXELS = 100_000
LARGE_IMAGE_PIXEL_STEP = 4
COMBINED_ID_SEPARATOR = "_AND_"

# =============================================================================
# LLM Processing
# =============================================================================

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_MAX_CONCURRENT_REQUESTS = 100
MAX_CONCURRENT_REQUESTS_LIMIT = 1000
DEFAULT_RETRY_COUNT = 2
DEFAULT_MAX_REFUSAL_RETRIES = 3
MAX_REFUSAL_RETRIES_LIMIT = 5
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1000

# Backoff schedule: min(2**attempt * base, max)
DEFAULT_RETRY_BASE_DELAY = 0.5  # seconds
DEFAULT_RETRY_MAX_DELAY = 8.0  # seconds

# Refusal detection
DEFAULT_REFUSAL_MODEL = "gpt-4o-mini"
DEFAULT_REFUSAL_TEMPERATURE = 0.1
DEFAULT_REFUSAL_MAX_TOKENS = 50
DEFAULT_REFUSAL_MAX_RETRIES = 2
REFUSAL_TEXT_LIMIT = 500

# =============================================================================
# Text Replacement
# =============================================================================

PAGE_NUMBER_TOKEN = "{pageNumber}"
DEFAULT_PAGE_HEADING_FORMAT = "\\n\\n\\n\\n//PAGE {pageNumber}: \\n\\n\\n"
DEFAULT_PAGE_SCAN_PREFIX = "#Full Page Scan of Page {pageNumber}: \\n\\n"
DEFAULT_PAGE_SCAN_SUFFIX = "\\n\\nEnd of Full Page Scan of Page {pageNumber}"
DEFAULT_IMAGE_PREFIX = (
    "\\n\\n\\n##Content of an Image appearing on Page {pageNumber}:\\n\\n"
)
DEFAULT_IMAGE_SUFFIX = "\\n\\n\\nEnd of Content of image appearing on Page {pageNumber}"
DEFAULT_PAGE_SEPARATOR = "\n\n"

# =============================================================================
# Logging
# =============================================================================

DEFAULT_LOG_LEVEL = "DEBUG"
DEFAULT_LOG_DIR = "~/.pdfscribe/logs"
DEFAULT_LOG_ROTATION = "10 MB"
DEFAULT_LOG_RETENTION = "7 days"

# =============================================================================
# Paths and Filenames
# =============================================================================

DEFAULT_OUTPUT_DIR = "./output"
DEFAULT_PROMPTS_DIR = "~/.pdfscribe/prompts"
CONFIG_FILENAME = "pdfscribe.json"
DEFAULT_JSON_INDENT = 2
