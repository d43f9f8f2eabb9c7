"""
Record type hook registry.

Each component or layout name may register a small set of hooks that
customize how its records are read and written:

    save(address, data, context)     -> dict | list[BatchOp]
    render(address, data, context)   -> dict
    delete(address, context)         -> Any
    list(address, context)           -> list
    renderers[ext](address, data, context) -> dict

Hooks may be plain functions or coroutines. A type without hooks uses the
default version routing.

Invariants:
    - Registry is mutable during startup, frozen before serving
    - Once frozen, no new hooks can be registered
    - (record type, name) pairs are unique

How to change safely:
    - Register all hooks before calling freeze()
    - Lookups after freeze are lock-free

Example:
    >>> registry = HookRegistry()
    >>> registry.register(COMPONENTS, "article", TypeHooks(render=render_article))
    >>> registry.freeze()
    >>> registry.get("site.com/_components/article/instances/a")
    TypeHooks(save=None, render=<function render_article ...>, ...)
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional, Tuple
import logging

from ..compose.addressing import COMPONENTS, LAYOUTS, parse_address
from ..errors import DuplicateRegistrationError, RegistryFrozenError

logger = logging.getLogger(__name__)

Hook = Callable[..., Any]


@dataclass(frozen=True)
class TypeHooks:
    """Optional capabilities of one record type.

    Attributes:
        save: Replaces default version routing for writes
        render: Post-processes records on read
        delete: Replaces the storage delete
        list: Lists instances in place of a storage prefix scan
        renderers: Per-format render functions keyed by extension
    """

    save: Optional[Hook] = None
    render: Optional[Hook] = None
    delete: Optional[Hook] = None
    list: Optional[Hook] = None
    renderers: Dict[str, Hook] = field(default_factory=dict)

    def renderer_for(self, extension: Optional[str]) -> Optional[Hook]:
        if not extension:
            return None
        return self.renderers.get(extension)


class HookRegistry:
    """Maps (record type, name) to TypeHooks.

    Thread-safety:
        - Registration is thread-safe (uses internal lock)
        - Freeze is atomic and irreversible
    """

    def __init__(self) -> None:
        self._hooks: Dict[Tuple[str, str], TypeHooks] = {}
        self._frozen = False
        self._lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, record_type: str, name: str, hooks: TypeHooks) -> None:
        """Register hooks for a component or layout name.

        Raises:
            RegistryFrozenError: If registry is frozen
            DuplicateRegistrationError: If name is already registered
            ValueError: If record_type is not _components or _layouts
        """
        if record_type not in (COMPONENTS, LAYOUTS):
            raise ValueError(f"Hooks can only be registered for components and layouts, not {record_type}")

        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register hooks for '{record_type}/{name}': registry is frozen"
                )
            if (record_type, name) in self._hooks:
                raise DuplicateRegistrationError(
                    f"Hooks for '{record_type}/{name}' are already registered"
                )

            self._hooks[(record_type, name)] = hooks
            logger.debug(f"Registered hooks: {record_type}/{name}")

    def lookup(self, record_type: str, name: str) -> Optional[TypeHooks]:
        return self._hooks.get((record_type, name))

    def get(self, address: str) -> Optional[TypeHooks]:
        """Hooks owning an address, if any."""
        try:
            parsed = parse_address(address)
        except ValueError:
            return None
        return self._hooks.get((parsed.type, parsed.name))

    def names(self, record_type: str) -> Iterator[str]:
        yield from (name for kind, name in self._hooks if kind == record_type)

    def freeze(self) -> None:
        """Freeze the registry.

        Raises:
            RegistryFrozenError: If already frozen
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError("Hook registry is already frozen")
            self._frozen = True
            logger.info(f"Hook registry frozen with {len(self._hooks)} record types")

    def __len__(self) -> int:
        return len(self._hooks)
