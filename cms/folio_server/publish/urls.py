"""
Public url resolution and url history for page publishing.

Url rules form a reject-quickly chain: each rule either raises (this page is
not mine) or returns the url. Site rules run first, then two built-ins:

    passthrough: the page's own customUrl or url
    dynamic:     pages flagged {"_dynamic": true} publish without a url

The first rule that does not raise wins, and a page's customUrl always
overrides whatever url the winning rule produced.

Invariants:
    - Rules receive a deep copy of the page; they cannot edit it
    - Url history only grows when the url differs from its last entry
    - Two or more history entries produce exactly one redirect, from the
      previous url to the newest one
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any, Optional

from ..compose.addressing import URIS, encode_uri, is_url, url_to_uri
from ..errors import ClientError
from ..records.models import invoke
from ..storage.base import BatchOp

logger = logging.getLogger(__name__)


class RuleRejected(Exception):
    """Raised by a url rule that does not apply to a page."""


def get_passthrough_page_url(address: str, data: dict, context: Any = None) -> str:
    url, custom_url = data.get("url"), data.get("customUrl")
    if not url and not custom_url:
        raise RuleRejected("All pages need a url or customUrl to publish")
    return custom_url or url


def publish_dynamic_page(address: str, data: dict, context: Any = None) -> bool:
    dynamic = data.get("_dynamic")
    if not isinstance(dynamic, bool) or not dynamic:
        raise RuleRejected("Page is not dynamic")
    return dynamic


BUILTIN_RULES = (get_passthrough_page_url, publish_dynamic_page)


@dataclass(frozen=True)
class PublishTarget:
    """Where a page publishes to.

    Attributes:
        url: Public url, None for dynamic pages
        dynamic: Page is served dynamically; no url history or _uris pointer
    """

    url: Optional[str]
    dynamic: bool = False


def assert_no_empty_values(data: Any, address: str = "") -> None:
    """Reject None, False and "" at any depth.

    Raises:
        ClientError: On the first empty value found
    """
    values = data.values() if isinstance(data, dict) else data
    for value in values:
        if value is None or value is False or value == "":
            raise ClientError("Page cannot have empty values.", details={"address": address})
        if isinstance(value, (dict, list)):
            assert_no_empty_values(value, address)


async def resolve_publish_url(
    rules: list, address: str, data: dict, context: Any = None
) -> PublishTarget:
    """Run the url chain for a page.

    Args:
        rules: Site rules, tried before the built-ins
        address: Page address
        data: Page data (not modified)
        context: Request context handed to rules

    Raises:
        ClientError: If no rule yields a valid url and the page is not dynamic
    """
    resolved: Any = None

    for rule in [*rules, *BUILTIN_RULES]:
        try:
            resolved = await invoke(rule, address, copy.deepcopy(data), context)
        except Exception as e:
            logger.debug(
                f"Url rule rejected {address}: {e}",
                extra={"rule": getattr(rule, "__name__", repr(rule))},
            )
            continue
        break

    if data.get("_dynamic") is True:
        return PublishTarget(url=None, dynamic=True)

    url = data.get("customUrl") or resolved
    if not is_url(url):
        raise ClientError("Page must have valid url to publish.", details={"address": address})
    return PublishTarget(url=url)


def extend_url_history(history: Optional[list], url: str) -> list:
    """Copy of history with url appended unless it is already the last entry."""
    history = list(history or [])
    if not history or history[-1] != url:
        history.append(url)
    return history


def redirect_operation(prefix: str, history: list) -> Optional[BatchOp]:
    """Point the previous url's _uris entry at the newest url's entry.

    Only the previous url needs a redirect: older ones already point at it.
    """
    if len(history) < 2:
        return None

    previous = f"{prefix}/{URIS}/{encode_uri(url_to_uri(history[-2]))}"
    newest = f"{prefix}/{URIS}/{encode_uri(url_to_uri(history[-1]))}"
    return BatchOp.put(previous, newest)


async def apply_publish_modifiers(
    modifiers: list, address: str, data: dict, meta: dict
) -> dict:
    """Let site modifiers add fields to the publish meta.

    Each modifier gets (address, data, accumulated) and returns a mapping
    that is merged in. The url fields in meta always win over modifiers.
    """
    if not modifiers:
        return meta

    accumulated: dict = {}
    for modify in modifiers:
        result = await invoke(modify, address, data, accumulated)
        if result:
            accumulated.update(result)
    accumulated.update(meta)
    return accumulated
