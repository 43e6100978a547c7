"""Components for talking to the Alma users API.

`AlmaClient` is the entry point; the rate limiter, response decoder and error
classifier are exported for custom integrations and tests.
"""  # noqa: D415

from .alma_client import AlmaClient, base_url_for_region, quote_user_id
from .decoder import UserListDecoder, decode_user_list
from .error_handler import ErrorClassifier
from .rate_limiter import RateLimiter

__all__ = [  # noqa: RUF022
    # Client
    "AlmaClient",
    "base_url_for_region",
    "quote_user_id",
    # Supporting components
    "RateLimiter",
    "UserListDecoder",
    "decode_user_list",
    "ErrorClassifier",
]
