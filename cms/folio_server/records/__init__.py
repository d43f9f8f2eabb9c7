"""
Record type services for Folio.

- RequestContext: per-request options handed to every hook
- HookRegistry / TypeHooks: per-name save/render/delete/list hooks
- ComponentService / LayoutService: the read and write paths
"""

from .components import ComponentService
from .context import RequestContext
from .hooks import HookRegistry, TypeHooks
from .layouts import LayoutService
from .models import run_get, run_save, run_with_budget
from .service import RecordTypeService, new_uid

__all__ = [
    "ComponentService",
    "RequestContext",
    "HookRegistry",
    "TypeHooks",
    "LayoutService",
    "run_get",
    "run_save",
    "run_with_budget",
    "RecordTypeService",
    "new_uid",
]
