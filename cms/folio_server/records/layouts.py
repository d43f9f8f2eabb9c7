"""
Layout records: site.com/_layouts/<name>[/instances/<id>][@<version>].

Layouts behave like components, and additionally announce creation and
publication to hook subscribers ("createLayout", "publishLayout").
"""

from __future__ import annotations

from ..compose.addressing import LAYOUTS
from .service import RecordTypeService


class LayoutService(RecordTypeService):
    """Layout reads and writes, with layout lifecycle events."""

    record_type = LAYOUTS
    create_event = "createLayout"
    publish_event = "publishLayout"
