"""
Per-request context passed through every record operation.

Hooks receive the context as their third argument. When one write fans out
to several records, each hook gets a read-only copy so one record's hook
cannot leak state into another's.
"""

from __future__ import annotations

import copy
from dataclasses import FrozenInstanceError, dataclass, field, fields, replace
from types import MappingProxyType
from typing import Any, Optional


@dataclass
class RequestContext:
    """Caller identity and request options.

    Attributes:
        user: Acting user, forwarded to hook payloads
        site: Site the request targets (publish.sites.Site)
        extension: Requested output format, selects a per-format renderer
        call_hooks: False skips render/save hooks (raw storage access)
        publish_url: Url chosen by the publish chain, set during publish
        is_dynamic_publish_url: Set when a dynamic page is being published
        extras: Free-form values for hooks
    """

    user: Any = None
    site: Any = None
    extension: Optional[str] = None
    call_hooks: bool = True
    publish_url: Optional[str] = None
    is_dynamic_publish_url: bool = False
    extras: dict = field(default_factory=dict)
    frozen: bool = field(default=False, repr=False, compare=False)

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "frozen", False):
            raise FrozenInstanceError(f"Cannot assign to field '{name}' of a read-only context")
        super().__setattr__(name, value)

    def read_only(self) -> RequestContext:
        """Deep copy that rejects attribute assignment.

        The site is shared, not copied: it holds callables and is
        process-wide configuration.
        """
        values = {
            f.name: copy.deepcopy(getattr(self, f.name))
            for f in fields(self)
            if f.name not in ("site", "frozen", "extras")
        }
        return RequestContext(
            site=self.site,
            extras=MappingProxyType(copy.deepcopy(dict(self.extras))),
            frozen=True,
            **values,
        )

    def with_updates(self, **changes: Any) -> RequestContext:
        """Mutable copy with some fields replaced."""
        return replace(self, frozen=False, **changes)
