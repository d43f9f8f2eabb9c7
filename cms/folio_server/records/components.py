"""Component records: site.com/_components/<name>[/instances/<id>][@<version>]."""

from __future__ import annotations

from ..compose.addressing import COMPONENTS
from .service import RecordTypeService


class ComponentService(RecordTypeService):
    """Components use the base behavior unchanged."""

    record_type = COMPONENTS
