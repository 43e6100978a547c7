"""Rate-limited batch maintenance of Alma user records."""

import importlib.metadata
import logging

from alma_batch.client import AlmaClient, RateLimiter
from alma_batch.config import FrozenConfig, RuleConfig, resolve_config
from alma_batch.core.exceptions import (
    AlmaBatchError,
    APIError,
    ApiProtocolError,
    ConfigurationError,
    DecodeError,
    JoinFailure,
    TransportError,
)
from alma_batch.core.types import (
    ErrorDetail,
    Page,
    PageResult,
    RecordError,
    RunSummary,
)
from alma_batch.orchestrator import BatchOrchestrator
from alma_batch.telemetry import TelemetryContext, TelemetryReporter
from alma_batch.transform import transform_user

# Version handling
try:
    __version__ = importlib.metadata.version("alma-batch")
except importlib.metadata.PackageNotFoundError:
    __version__ = "development"

# Library code never configures handlers; the CLI does.
logging.getLogger(__name__).addHandler(logging.NullHandler())

# Public API
__all__ = [  # noqa: RUF022
    # Orchestration
    "BatchOrchestrator",
    "AlmaClient",
    "RateLimiter",
    "transform_user",
    # Configuration
    "resolve_config",
    "FrozenConfig",
    "RuleConfig",
    # Telemetry (extension points)
    "TelemetryContext",
    "TelemetryReporter",
    # Results
    "ErrorDetail",
    "Page",
    "PageResult",
    "RecordError",
    "RunSummary",
    # Exceptions
    "AlmaBatchError",
    "APIError",
    "ApiProtocolError",
    "ConfigurationError",
    "DecodeError",
    "JoinFailure",
    "TransportError",
]
