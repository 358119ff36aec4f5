"""Turn request paths and query strings into route descriptors.

Accepted path shapes, optionally prefixed by ``/{key}`` and, after a key, by a
filter segment starting with ``.``::

    /                                        all sources
    /{source}/                               one source
    /{source}/{container_id}/                one container
    /{source}/{container_id}/{file_id}[.ext] download
    /{t|w|u}-{container_id}/                 one container (short form)
    /{t|w|u}-{container_id}/{file_id}[.ext]  download (short form)
    /f/{source}/{container_id}/{file_id}     download

Malformed paths raise :class:`~torbox_index.errors.NotFound`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional
from urllib.parse import urlencode

from torbox_index.errors import BadRequest, NotFound
from torbox_index.filters import SortColumn, SortOrder
from torbox_index.models import Source

_ID = re.compile(r"\d+", re.ASCII)
_SLUG = re.compile(r"([twu])-(\d+)", re.ASCII)
_SOURCE_NAMES = frozenset(source.value for source in Source)
SORT_PARAMS = ("C", "O")


class RouteKind(str, Enum):
    ROOT = "root"
    SOURCE = "source"
    CONTAINER = "container"
    DOWNLOAD = "download"


@dataclass(frozen=True)
class Route:
    kind: RouteKind
    source: Optional[Source] = None
    container_id: Optional[int] = None
    file_id: Optional[int] = None

    @property
    def is_listing(self) -> bool:
        return self.kind is not RouteKind.DOWNLOAD


@dataclass(frozen=True)
class PathParts:
    """A path split into its key, filter and route segments."""

    key: str
    filter: Optional[str]
    route_parts: tuple[str, ...]

    @property
    def key_in_path(self) -> bool:
        return bool(self.key)


@dataclass(frozen=True)
class ListingQuery:
    key: str
    filter: Optional[str]
    flags: Optional[str]
    limit: int
    column: SortColumn
    order: SortOrder
    passthrough: str


def split_path(pathname: str) -> list[str]:
    return [part for part in pathname.split("/") if part]


def normalize_filter_segment(raw: str) -> str:
    """``.nsz`` listings also want the matching ``.nsp`` files."""
    if ".nsz" in raw and ".nsp" not in raw:
        return f"{raw},.nsp"
    return raw


def _is_route_head(segment: str) -> bool:
    return segment == "f" or segment in _SOURCE_NAMES or _SLUG.fullmatch(segment) is not None


def split_key_and_filter(pathname: str) -> PathParts:
    parts = split_path(pathname)
    if not parts or parts[0] in _SOURCE_NAMES:
        return PathParts(key="", filter=None, route_parts=tuple(parts))

    key, rest = parts[0], parts[1:]
    if rest and not _is_route_head(rest[0]) and rest[0].startswith("."):
        return PathParts(key=key, filter=normalize_filter_segment(rest[0]), route_parts=tuple(rest[1:]))
    return PathParts(key=key, filter=None, route_parts=tuple(rest))


def _parse_id(text: str, *, minimum: int) -> int:
    head = text.split(".", 1)[0]
    if not _ID.fullmatch(head):
        raise NotFound("Not found")
    value = int(head)
    if value < minimum:
        raise NotFound("Not found")
    return value


def _parse_source(text: str) -> Source:
    if text not in _SOURCE_NAMES:
        raise NotFound("Not found")
    return Source(text)


def _download(source: Source, container: str, file: str) -> Route:
    return Route(
        RouteKind.DOWNLOAD,
        source=source,
        container_id=_parse_id(container, minimum=1),
        file_id=_parse_id(file, minimum=0),
    )


def parse_route(parts: tuple[str, ...]) -> Route:
    if not parts:
        return Route(RouteKind.ROOT)

    head = parts[0]
    if head == "f":
        if len(parts) != 4:
            raise NotFound("Not found")
        return _download(_parse_source(parts[1]), parts[2], parts[3])

    slug = _SLUG.fullmatch(head)
    if slug:
        source = Source.from_short(slug.group(1))
        container_id = _parse_id(slug.group(2), minimum=1)
        if len(parts) == 1:
            return Route(RouteKind.CONTAINER, source=source, container_id=container_id)
        if len(parts) == 2:
            return Route(
                RouteKind.DOWNLOAD,
                source=source,
                container_id=container_id,
                file_id=_parse_id(parts[1], minimum=0),
            )
        raise NotFound("Not found")

    source = _parse_source(head)
    if len(parts) == 1:
        return Route(RouteKind.SOURCE, source=source)
    if len(parts) == 2:
        return Route(RouteKind.CONTAINER, source=source, container_id=_parse_id(parts[1], minimum=1))
    if len(parts) == 3:
        return _download(source, parts[1], parts[2])
    raise NotFound("Not found")


def parse_query(params: Mapping[str, str], *, default_limit: int, max_limit: int) -> ListingQuery:
    raw_limit = params.get("limit")
    if raw_limit is None or raw_limit == "":
        limit = default_limit
    else:
        try:
            limit = int(raw_limit)
        except ValueError:
            raise BadRequest(f"Invalid limit: {raw_limit!r}") from None
    limit = min(max(limit, 1), max_limit)

    try:
        column = SortColumn(params.get("C", "N"))
    except ValueError:
        column = SortColumn.NAME
    try:
        order = SortOrder(params.get("O", "A"))
    except ValueError:
        order = SortOrder.ASC

    passthrough = urlencode([(name, value) for name, value in params.items() if name not in SORT_PARAMS])
    return ListingQuery(
        key=params.get("key", ""),
        filter=params.get("filter"),
        flags=params.get("flags"),
        limit=limit,
        column=column,
        order=order,
        passthrough=passthrough,
    )
