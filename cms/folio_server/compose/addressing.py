"""
Version addressing for Folio records.

An address is a storage key shaped like:

    <prefix>/<type>/<name>[/instances/<id>][@<version>]

where prefix may itself contain slashes ("domain.com/path"). The version
suffix is absent for the working ("latest") copy, "published" for the public
copy, or any caller-chosen tag.

Everything in this module is pure: no I/O, no logging.

Invariants:
    - with_version(a, None) == strip_version(a)
    - propagate_version() only ever rewrites "_ref" values
    - list_deep_objects() visits every dict/list exactly once, in a fixed order

How to change safely:
    - The splitter depends on list_deep_objects() discovery order; changing
      the traversal changes which of two nested nodes is emitted first
    - encode_uri() output is persisted as part of _uris keys; never change it
"""

from __future__ import annotations

import base64
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlsplit, urlunsplit

REF = "_ref"
PUBLISHED = "published"
INSTANCES_SEGMENT = "/instances/"

COMPONENTS = "_components"
LAYOUTS = "_layouts"
PAGES = "_pages"
URIS = "_uris"
SCHEDULE = "_schedule"

# Versions whose identity is rewritten across a whole referenced subgraph.
# The absent suffix ("latest") is always propagating as well.
PROPAGATING_VERSIONS = frozenset({PUBLISHED})

# Page fields that configure the page rather than reference components
PAGE_CONFIGURATION_FIELDS = (
    "layout",
    "url",
    "urlHistory",
    "customUrl",
    "lastModified",
    "priority",
    "changeFrequency",
    "_dynamic",
)

_ADDRESS_RE = re.compile(
    r"^(?P<prefix>.*?)/(?P<type>_[a-z]+)/(?P<name>[^/@]+)"
    r"(?:/instances/(?P<instance>[^@]+))?"
    r"(?:@(?P<version>.+))?$"
)


@dataclass(frozen=True)
class ParsedAddress:
    """Structured view of an address.

    Attributes:
        prefix: Site prefix, e.g. "domain.com/path"
        type: Record type segment, e.g. "_components"
        name: Component/layout name, page id, or encoded uri
        instance: Instance id, if any
        version: Version tag, None for latest
    """

    prefix: str
    type: str
    name: str
    instance: Optional[str] = None
    version: Optional[str] = None

    @property
    def base(self) -> str:
        """Address without version or instance segment."""
        return f"{self.prefix}/{self.type}/{self.name}"


def parse_address(address: str) -> ParsedAddress:
    """Split an address into its parts.

    Raises:
        ValueError: If the address is not of the <prefix>/<type>/<name> form
    """
    match = _ADDRESS_RE.match(address or "")
    if match is None:
        raise ValueError(f"Invalid address: {address!r}")
    return ParsedAddress(**match.groupdict())


def strip_version(address: str) -> str:
    return address.split("@", 1)[0]


def get_version(address: str) -> Optional[str]:
    _, sep, version = address.partition("@")
    return version if sep and version else None


def with_version(address: str, version: Optional[str] = None) -> str:
    """Replace (or add) the version suffix. An empty version strips it.

    >>> with_version("x/y@tag1", "published")
    'x/y@published'
    >>> with_version("x/y", None)
    'x/y'
    """
    base = strip_version(address)
    return f"{base}@{version}" if version else base


def is_propagating(address: str) -> bool:
    """True iff the address is latest (no suffix) or published."""
    version = get_version(address)
    return version is None or version in PROPAGATING_VERSIONS


def is_published(address: str) -> bool:
    return get_version(address) == PUBLISHED


def get_prefix(address: str) -> str:
    """Site prefix of an address: everything before the first "/_" segment."""
    index = address.find("/_")
    return address[:index] if index >= 0 else ""


def get_type(address: str) -> Optional[str]:
    try:
        return parse_address(address).type
    except ValueError:
        return None


def get_component_name(address: str) -> Optional[str]:
    try:
        parsed = parse_address(address)
    except ValueError:
        return None
    return parsed.name if parsed.type == COMPONENTS else None


def get_layout_name(address: str) -> Optional[str]:
    try:
        parsed = parse_address(address)
    except ValueError:
        return None
    return parsed.name if parsed.type == LAYOUTS else None


def has_reference(obj: Any) -> bool:
    return isinstance(obj, dict) and bool(obj.get(REF))


def is_referenced_and_real(obj: Any) -> bool:
    """A reference that also carries inline data to be split out."""
    return isinstance(obj, dict) and isinstance(obj.get(REF), str) and len(obj) > 1


def is_instance_reference(obj: Any) -> bool:
    return (
        isinstance(obj, dict)
        and isinstance(obj.get(REF), str)
        and INSTANCES_SEGMENT in obj[REF]
    )


def _children(node: Any) -> list:
    values: Iterable[Any] = node.values() if isinstance(node, dict) else node
    return [value for value in values if isinstance(value, (dict, list))]


def list_deep_objects(
    obj: Any, predicate: Optional[Callable[[Any], bool]] = None
) -> list:
    """All nested dicts/lists below obj that match predicate.

    The root itself is never included. Traversal is a stack walk: a node's
    direct children are reported together, then the most recently discovered
    child is expanded first.
    """
    found: list = []
    stack = [obj]

    while stack:
        cursor = stack.pop()
        items = _children(cursor)
        found.extend(item for item in items if predicate is None or predicate(item))
        stack.extend(items)

    return found


def propagate_version(version: Optional[str], document: Any) -> Any:
    """Rewrite every reachable _ref to the given version, in place.

    Returns the same document for chaining.
    """
    for obj in list_deep_objects(document, has_reference):
        obj[REF] = with_version(obj[REF], version)
    return document


def is_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    parts = urlsplit(value)
    return bool(parts.scheme and parts.hostname)


def is_uri(value: Any) -> bool:
    """Addresses never contain a colon; urls always do."""
    return isinstance(value, str) and ":" not in value


def url_to_uri(url: str) -> str:
    """Drop protocol and port: "http://a.com:3001/b?c" -> "a.com/b?c".

    Raises:
        ValueError: If url is not an absolute url
    """
    if not is_url(url):
        raise ValueError(f"Invalid url {url}")
    parts = urlsplit(url)
    uri = f"{parts.hostname}{parts.path or '/'}"
    return f"{uri}?{parts.query}" if parts.query else uri


def uri_to_url(uri: str, protocol: str = "http", port: Optional[int] = None) -> str:
    parts = urlsplit(f"http://{uri}")
    netloc = parts.hostname or ""
    if port and not (protocol == "http" and int(port) == 80):
        netloc = f"{netloc}:{port}"
    return urlunsplit((protocol, netloc, parts.path, parts.query, ""))


def encode_uri(uri: str) -> str:
    """Encode a public uri for use as the name segment of a _uris key."""
    return base64.urlsafe_b64encode(uri.encode("utf-8")).decode("ascii")


def decode_uri(encoded: str) -> str:
    return base64.urlsafe_b64decode(encoded.encode("ascii")).decode("utf-8")


def uris_key(prefix: str, uri: str) -> str:
    return f"{prefix}/{URIS}/{encode_uri(uri)}"


def omit_page_configuration(page: dict) -> dict:
    """Page data minus its configuration fields: only references remain."""
    return {key: value for key, value in page.items() if key not in PAGE_CONFIGURATION_FIELDS}


def get_page_references(page: dict) -> list[str]:
    """Every component address listed at the top level of a page."""
    found: list[str] = []
    for value in omit_page_configuration(page).values():
        candidates = value if isinstance(value, list) else [value]
        found.extend(item for item in candidates if is_uri(item) and get_component_name(item))
    return found


def replace_page_reference_versions(page: dict, version: Optional[str]) -> dict:
    """Copy of page with every address field (or list of addresses) re-versioned.

    Urls are left alone: is_uri() rejects anything containing a colon.
    """

    def rewrite(value: Any) -> Any:
        if isinstance(value, str) and is_uri(value) and get_type(value):
            return with_version(value, version)
        return value

    result = {}
    for key, value in page.items():
        if isinstance(value, list):
            result[key] = [rewrite(item) for item in value]
        else:
            result[key] = rewrite(value)
    return result
