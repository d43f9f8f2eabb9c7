"""
Document composition for Folio.

- addressing: address parsing and version rewriting (pure)
- resolver: read-side expansion of references
- splitter: write-side decomposition into flat records
"""

from .addressing import (
    PUBLISHED,
    REF,
    ParsedAddress,
    get_version,
    is_propagating,
    parse_address,
    propagate_version,
    strip_version,
    with_version,
)
from .resolver import ReferenceResolver, resolve_references
from .splitter import (
    CascadingPut,
    SplitResult,
    cascading_put,
    get_put_operations,
    put_default_behavior,
    split_cascading_data,
)

__all__ = [
    "PUBLISHED",
    "REF",
    "ParsedAddress",
    "get_version",
    "is_propagating",
    "parse_address",
    "propagate_version",
    "strip_version",
    "with_version",
    "ReferenceResolver",
    "resolve_references",
    "CascadingPut",
    "SplitResult",
    "cascading_put",
    "get_put_operations",
    "put_default_behavior",
    "split_cascading_data",
]
