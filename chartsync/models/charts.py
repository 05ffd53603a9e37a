"""
ChartSync Repository
Introductory remarks: This module is part of the ChartSync codebase.

Domain models for published chart versions and related helpers.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping, Optional, Sequence, Tuple

# Semantic Versioning 2.0.0, with the optional leading "v" Helm tolerates.
SEMVER_REGEX = re.compile(
    r"^v?(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<prerelease>(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"
    r"(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+(?P<build>[0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)

CHART_NAME_REGEX = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.\-]*$")

# Fields owned by the index rather than by Chart.yaml.
INDEX_ONLY_FIELDS = ("urls", "digest", "created")
_ENTRY_FIELDS = ("name", "version") + INDEX_ONLY_FIELDS


def validate_chart_name(name: Any) -> str:
    """Ensure chart names are non-empty and path-safe."""
    if not isinstance(name, str) or not name:
        raise ValueError("Chart name cannot be empty")
    if not CHART_NAME_REGEX.match(name):
        raise ValueError(
            f"Chart name '{name}' is invalid. Expected pattern "
            f"{CHART_NAME_REGEX.pattern}"
        )
    return name


def validate_version(version: Any) -> str:
    """Ensure ``version`` is a semantic version string."""
    if not isinstance(version, str) or not SEMVER_REGEX.match(version):
        raise ValueError(f"Chart version '{version}' is not a valid semver")
    return version


def _prerelease_key(prerelease: Optional[str]) -> Tuple[Any, ...]:
    # A release sorts above any of its pre-releases.
    if prerelease is None:
        return (1,)
    identifiers = []
    for part in prerelease.split("."):
        if part.isdigit():
            identifiers.append((0, int(part), ""))
        else:
            identifiers.append((1, 0, part))
    return (0, tuple(identifiers))


def version_sort_key(version: str) -> Tuple[Any, ...]:
    """Return a key ordering versions by semver precedence.

    Build metadata does not affect precedence; it only breaks ties so that
    the ordering stays deterministic.
    """
    match = SEMVER_REGEX.match(version)
    if match is None:
        raise ValueError(f"Chart version '{version}' is not a valid semver")
    return (
        int(match.group("major")),
        int(match.group("minor")),
        int(match.group("patch")),
        _prerelease_key(match.group("prerelease")),
        match.group("build") or "",
    )


def format_timestamp(value: datetime) -> str:
    """Render ``value`` as an RFC 3339 string in UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


_FRACTION_REGEX = re.compile(r"\.(\d+)")


def _six_digit_fraction(match: "re.Match[str]") -> str:
    return "." + match.group(1)[:6].ljust(6, "0")


def parse_timestamp(value: Any) -> datetime:
    """Parse an index timestamp into an aware UTC datetime.

    Accepts datetimes (as produced by YAML loaders) and RFC 3339 strings,
    including the nanosecond precision Go tooling writes.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        text = _FRACTION_REGEX.sub(_six_digit_fraction, text)
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Timestamp '{value}' is not valid")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class ChartEntry:
    """One published version of one chart.

    ``metadata`` carries the chart's own fields (``Chart.yaml``: description,
    appVersion, apiVersion, ...); the entry adds the index-owned fields.
    """

    name: str
    version: str
    urls: Tuple[str, ...]
    digest: str
    created: datetime
    metadata: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        validate_chart_name(self.name)
        validate_version(self.version)
        if isinstance(self.urls, str):
            raise ValueError("Chart URLs must be a sequence, not a string")
        urls = tuple(self.urls)
        if not urls or not all(isinstance(url, str) and url for url in urls):
            raise ValueError(
                f"Chart '{self.name}' {self.version} needs at least one URL"
            )
        object.__setattr__(self, "urls", urls)
        object.__setattr__(self, "created", parse_timestamp(self.created))
        cleaned = {
            key: value
            for key, value in dict(self.metadata).items()
            if key not in _ENTRY_FIELDS
        }
        object.__setattr__(self, "metadata", MappingProxyType(cleaned))

    @property
    def identity(self) -> Tuple[str, str]:
        return (self.name, self.version)

    @classmethod
    def from_chart(
        cls,
        chart: Mapping[str, Any],
        *,
        urls: Sequence[str],
        digest: str,
        created: datetime,
    ) -> "ChartEntry":
        """Build an entry from parsed ``Chart.yaml`` contents."""
        return cls(
            name=chart.get("name"),  # type: ignore[arg-type]
            version=chart.get("version"),  # type: ignore[arg-type]
            urls=tuple(urls),
            digest=digest,
            created=created,
            metadata=chart,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = dict(self.metadata)
        payload.update(
            {
                "name": self.name,
                "version": self.version,
                "urls": list(self.urls),
                "digest": self.digest,
                "created": format_timestamp(self.created),
            }
        )
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ChartEntry":
        urls = payload.get("urls")
        if not isinstance(urls, list):
            raise ValueError("Chart entry 'urls' must be a list")
        return cls(
            name=payload.get("name"),  # type: ignore[arg-type]
            version=payload.get("version"),  # type: ignore[arg-type]
            urls=tuple(urls),
            digest=str(payload.get("digest") or ""),
            created=parse_timestamp(payload.get("created")),
            metadata=payload,
        )
