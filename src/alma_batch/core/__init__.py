"""Core values and exceptions shared across alma_batch."""

from .exceptions import (
    AlmaBatchError,
    APIError,
    ApiProtocolError,
    ConfigurationError,
    DecodeError,
    JoinFailure,
    TransportError,
)
from .types import (
    Changed,
    ErrorDetail,
    Page,
    PageResult,
    RecordError,
    RecordOutcome,
    RunSummary,
    TransformOutcome,
    Unchanged,
    UserList,
)

__all__ = [  # noqa: RUF022
    "AlmaBatchError",
    "APIError",
    "ApiProtocolError",
    "ConfigurationError",
    "DecodeError",
    "JoinFailure",
    "TransportError",
    "Changed",
    "ErrorDetail",
    "Page",
    "PageResult",
    "RecordError",
    "RecordOutcome",
    "RunSummary",
    "TransformOutcome",
    "Unchanged",
    "UserList",
]
