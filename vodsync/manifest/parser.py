"""Turn a manifest worksheet into per-VOD row groups."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Callable

from ..errors import MalformedInputError
from ..integrations import Worksheet
from ..models import ManifestGroup, ManifestRow
from . import template
from .links import VodLink, extract_link

logger = logging.getLogger(__name__)

DATE_FORMATS: tuple[str, ...] = ("%d/%m/%y", "%m/%d/%y")


def parse_date(text: str, resource_id: str | None = None) -> date:
    """Parse a ``dd/mm/yy`` cell, falling back to ``mm/dd/yy``."""
    value = text.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise MalformedInputError("worksheet", resource_id, f"Time parse error: {value!r}")


class ManifestParser:
    """Groups worksheet rows by the main and secondary platform ids they reference."""

    def __init__(
        self,
        main_platform: str,
        secondary_platform: str | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.main_platform = main_platform
        self.secondary_platform = secondary_platform
        self.fields = template.manifest_fields(main_platform, secondary_platform)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def parse(self, worksheet: Worksheet, resource_id: str | None = None) -> list[ManifestGroup] | None:
        """Return the worksheet's groups, main-platform groups first, or ``None`` if it is not a manifest."""
        if not template.is_manifest_worksheet(worksheet.header):
            return None
        columns = template.resolve_columns(worksheet.header, self.fields)
        logger.debug("Created the template for worksheet %s: %s", worksheet.title, columns.offsets)

        added = self.clock()
        streamed: date | None = None
        main_groups: dict[str, ManifestGroup] = {}
        secondary_groups: dict[str, ManifestGroup] = {}

        for raw in worksheet.rows:
            cells = columns.pad(raw)
            date_cell = columns.value(cells, template.DATE)
            if "/" in date_cell:
                streamed = parse_date(date_cell, resource_id)

            main, secondary = self._row_links(columns, cells)
            if main is None and secondary is None:
                continue
            row = ManifestRow(
                date_added=added,
                date_streamed=streamed,
                main_platform=self.main_platform,
                main_id=main.id if main else None,
                secondary_platform=self.secondary_platform,
                secondary_id=secondary.id if secondary else None,
                start=columns.value(cells, template.START),
                end=columns.value(cells, template.END),
                main_stamp=main.stamp if main else 0,
                secondary_stamp=secondary.stamp if secondary else 0,
                game=columns.value(cells, template.GAME),
                subject=columns.value(cells, template.SUBJECT),
                topic=columns.value(cells, template.TOPIC),
            )
            if main is not None:
                main_groups.setdefault(main.id, ManifestGroup("main", self.main_platform, main.id)).rows.append(row)
            if secondary is not None and self.secondary_platform:
                secondary_groups.setdefault(
                    secondary.id, ManifestGroup("secondary", self.secondary_platform, secondary.id)
                ).rows.append(row)

        return [*main_groups.values(), *secondary_groups.values()]

    def _row_links(self, columns: template.ColumnMap, cells: list[str]) -> tuple[VodLink | None, VodLink | None]:
        main: VodLink | None = None
        secondary: VodLink | None = None
        for offset in columns.link_offsets():
            link = extract_link(cells[offset])
            if link is None:
                continue
            if link.platform == self.main_platform and main is None:
                main = link
            elif link.platform == self.secondary_platform and secondary is None:
                secondary = link
            else:
                logger.debug("Ignoring %s link %s outside the configured platforms", link.platform, link.id)
        return main, secondary
