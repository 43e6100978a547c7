"""Core configuration data types for an alma_batch run.

Configuration is resolved once at startup, then frozen and passed explicitly
to the client, the transformer and the orchestrator.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Literal

ConfigOrigin = Literal["programmatic", "env", "dotenv", "file", "default"]
SourceMap = Mapping[str, ConfigOrigin]


@dataclass(frozen=True)
class RuleConfig:
    """Immutable transformation rules shared read-only by every page task."""

    categories_to_remove: frozenset[str] = field(default_factory=frozenset)
    external_user_groups: frozenset[str] = field(default_factory=frozenset)
    normalize_titles: bool = True
    prune_role_parameters: bool = True

    def __post_init__(self) -> None:
        """Coerce plain iterables into frozensets."""
        for name in ("categories_to_remove", "external_user_groups"):
            value = getattr(self, name)
            if isinstance(value, str):
                raise TypeError(f"{name}: expected a collection of str, got str")
            if not isinstance(value, frozenset):
                object.__setattr__(self, name, frozenset(value))

    @classmethod
    def build(
        cls,
        categories_to_remove: Iterable[str] = (),
        external_user_groups: Iterable[str] = (),
        **flags: bool,
    ) -> "RuleConfig":
        """Convenience constructor accepting any iterables."""
        return cls(
            categories_to_remove=frozenset(categories_to_remove),
            external_user_groups=frozenset(external_user_groups),
            **flags,
        )


@dataclass(frozen=True)
class FrozenConfig:
    """Immutable configuration for one batch run.

    Any attempt to modify this object will raise an exception.
    """

    api_key: str
    base_url: str
    page_size: int
    requests_per_second: float
    burst: int
    jitter_ms: float
    timeout_seconds: float
    max_concurrency: int | None
    rules: RuleConfig
    origin: SourceMap = field(default_factory=dict, compare=False)

    def __str__(self) -> str:
        """String representation with redacted API key for safe logging."""
        return (
            f"FrozenConfig(api_key='[REDACTED]', base_url={self.base_url!r}, "
            f"page_size={self.page_size!r}, "
            f"requests_per_second={self.requests_per_second!r}, "
            f"burst={self.burst!r}, jitter_ms={self.jitter_ms!r}, "
            f"timeout_seconds={self.timeout_seconds!r}, "
            f"max_concurrency={self.max_concurrency!r}, "
            f"categories_to_remove={len(self.rules.categories_to_remove)}, "
            f"external_user_groups={len(self.rules.external_user_groups)})"
        )

    def __repr__(self) -> str:
        """Representation with redacted API key for safe debugging."""
        return self.__str__()

    def audit(self) -> str:
        """Report where each resolved field came from, without secrets."""
        lines = []
        for name, origin in sorted(self.origin.items()):
            if name == "api_key":
                lines.append(f"{name}: {origin}:<redacted>")
            elif hasattr(self, name):
                lines.append(f"{name}: {origin}:{getattr(self, name)}")
            else:
                lines.append(f"{name}: {origin}")
        return "\n".join(lines)
