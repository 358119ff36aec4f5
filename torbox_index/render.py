"""Apache-style ``<pre>`` directory listings."""

from __future__ import annotations

from dataclasses import dataclass, field
from html import escape
from typing import Optional, Sequence

from torbox_index.models import ListingEntry

NAME_WIDTH = 96
_UNITS = (" ", "K", "M", "G", "T", "P")

PAGE = """<!DOCTYPE HTML PUBLIC "-//W3C//DTD HTML 3.2 Final//EN">
<html>
 <head>
  <title>{title}</title>
 </head>
 <body>
  <h1>{title}</h1>
{warnings}<pre>
      <a href="{name_sort}">{name_header}</a> <a href="{size_sort}">Size</a>  <a href="{desc_sort}">Description</a>
<hr>
{rows}<hr>
</pre>
  <address>{summary}</address>
 </body>
</html>"""


@dataclass
class Listing:
    title: str
    entries: Sequence[ListingEntry]
    displayed: int
    total_matched: int
    limit: int
    summary_noun: str
    filter_text: Optional[str] = None
    errors: Sequence[str] = field(default_factory=list)
    passthrough: str = ""

    @property
    def truncated(self) -> bool:
        return self.total_matched > self.limit


def format_size(size: Optional[int]) -> str:
    """Four-column size as Apache prints it.

    Examples:
        >>> format_size(None)
        '  - '
        >>> format_size(512)
        '512 '
        >>> format_size(1536)
        '1.5K'
        >>> format_size(20 * 1024 * 1024)
        ' 20M'
    """
    if not size or size <= 0:
        return "  - "
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(_UNITS) - 1:
        value /= 1024
        unit += 1
    if unit == 0:
        return f"{size:>3} "
    text = f"{value:.1f}" if value < 10 else str(round(value))
    return f"{text:>3}{_UNITS[unit]}"


def format_size_human(size: int) -> str:
    return format_size(size).strip() or "0"


def truncate_name(name: str) -> str:
    if len(name) <= NAME_WIDTH:
        return name
    return f"{name[:NAME_WIDTH - 3]}..>"


def sort_href(passthrough: str, column: str, order: str) -> str:
    href = f"?C={column}&O={order}"
    return f"{href}&{passthrough}" if passthrough else href


def _row(entry: ListingEntry) -> str:
    display = truncate_name(entry.name)
    pad = " " * max(1, NAME_WIDTH - len(display))
    size = format_size(entry.size)
    description = escape(entry.description or "-")
    if entry.href:
        return f'<a href="{escape(entry.href)}">{escape(display)}</a>{pad} {size}  {description}'
    return f"{escape(display)}{pad} {size}  {description}"


def render_listing(listing: Listing) -> str:
    total_bytes = sum(entry.size or 0 for entry in listing.entries)

    warnings = []
    if listing.filter_text:
        warnings.append(f"filter: {listing.filter_text}")
    if listing.truncated:
        warnings.append(f"truncated: {listing.total_matched} matched, showing first {listing.displayed}")
    if listing.errors:
        warnings.append(f"source errors: {'; '.join(listing.errors)}")

    summary = f"{listing.displayed} {listing.summary_noun}, {format_size_human(total_bytes)} total"
    if listing.truncated:
        summary += f" (truncated from {listing.total_matched})"
    if listing.filter_text:
        summary += f" | filter: {listing.filter_text}"
    if listing.errors:
        summary += f" | errors: {'; '.join(listing.errors)}"

    return PAGE.format(
        title=escape(listing.title),
        warnings="".join(f"<!-- {escape(warning)} -->\n" for warning in warnings),
        name_sort=escape(sort_href(listing.passthrough, "N", "D")),
        size_sort=escape(sort_href(listing.passthrough, "S", "A")),
        desc_sort=escape(sort_href(listing.passthrough, "D", "A")),
        name_header=f"Name{' ' * (NAME_WIDTH - 4)}",
        rows="".join(f"{_row(entry)}\n" for entry in listing.entries),
        summary=escape(summary),
    )
