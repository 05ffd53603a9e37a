"""Domain model package exports."""

from .charts import (ChartEntry, format_timestamp, parse_timestamp,
                     validate_chart_name, validate_version, version_sort_key)
from .index import (IndexFile, merge, next_generated, parse_index, remove,
                    replace_all, serialize_index)

__all__ = [
    "ChartEntry",
    "IndexFile",
    "format_timestamp",
    "merge",
    "next_generated",
    "parse_index",
    "parse_timestamp",
    "remove",
    "replace_all",
    "serialize_index",
    "validate_chart_name",
    "validate_version",
    "version_sort_key",
]
