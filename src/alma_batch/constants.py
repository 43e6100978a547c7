"""
Project-wide constants for the Alma batch client
"""  # noqa: D200, D212, D415

# ==============================================================================
# API and Network Configuration
# ==============================================================================

BASE_URL_TEMPLATE = "https://api-{region}.hosted.exlibrisgroup.com/almaws/v1/"
USERS_COLLECTION = "users"
LIST_ORDER_BY = "primary_id"
APIKEY_PARAM = "apikey"

NETWORK_TIMEOUT = 30.0  # seconds

XML_MEDIA_TYPE = "application/xml"
JSON_MEDIA_TYPE = "application/json"

# ==============================================================================
# Rate Limiting
# ==============================================================================

REQUESTS_PER_SECOND = 10.0
RATE_LIMIT_BURST = 1
RATE_LIMIT_JITTER = 0.075  # seconds

# ==============================================================================
# Batch Processing Configuration
# ==============================================================================

PAGE_SIZE = 100

# ==============================================================================
# Listing Response Markup
# ==============================================================================

USERS_ELEMENT = "users"
TOTAL_RECORD_COUNT_ATTR = "total_record_count"
PRIMARY_ID_ELEMENT = "primary_id"

# ==============================================================================
# Error Response Markup
# ==============================================================================

ERROR_ELEMENT = "error"
ERROR_CODE_ELEMENT = "errorCode"
ERROR_MESSAGE_ELEMENT = "errorMessage"
TRACKING_ID_ELEMENT = "trackingId"
ERROR_LIST_KEY = "errorList"

# ==============================================================================
# Transformation Rules
# ==============================================================================

DEFAULT_CIRC_DESK = "DEFAULT_CIRC_DESK"
INTERNAL_SEGMENT = "Internal"
