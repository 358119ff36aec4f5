import pytest

from torbox_index.errors import BadRequest, NotFound
from torbox_index.filters import SortColumn, SortOrder
from torbox_index.models import Source
from torbox_index.routes import Route, RouteKind, parse_query, parse_route, split_key_and_filter


def route_for(path: str) -> Route:
    return parse_route(split_key_and_filter(path).route_parts)


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("/", Route(RouteKind.ROOT)),
        ("/torrents/", Route(RouteKind.SOURCE, Source.TORRENTS)),
        ("/webdl/12/", Route(RouteKind.CONTAINER, Source.WEBDL, 12)),
        ("/usenet/12/0", Route(RouteKind.DOWNLOAD, Source.USENET, 12, 0)),
        ("/torrents/12/34.mkv", Route(RouteKind.DOWNLOAD, Source.TORRENTS, 12, 34)),
        ("/KEY/", Route(RouteKind.ROOT)),
        ("/KEY/t-5/", Route(RouteKind.CONTAINER, Source.TORRENTS, 5)),
        ("/KEY/w-5/8.pdf", Route(RouteKind.DOWNLOAD, Source.WEBDL, 5, 8)),
        ("/KEY/f/usenet/3/4", Route(RouteKind.DOWNLOAD, Source.USENET, 3, 4)),
        ("/KEY/.mkv/u-2/", Route(RouteKind.CONTAINER, Source.USENET, 2)),
    ],
)
def test_route_shapes(path, expected):
    assert route_for(path) == expected


@pytest.mark.parametrize(
    "path",
    [
        "/KEY/music/",
        "/torrents/0/",
        "/torrents/-1/",
        "/torrents/abc/",
        "/torrents/1/x.mkv",
        "/torrents/1/2/3",
        "/KEY/f/torrents/1",
        "/KEY/f/books/1/2",
        "/KEY/t-0/",
        "/KEY/t-1/2/3",
        "/torrents/１２/",
    ],
)
def test_malformed_paths_are_not_found(path):
    with pytest.raises(NotFound):
        route_for(path)


def test_key_and_filter_segments():
    parts = split_key_and_filter("/abc123/.mkv,.mp4/torrents/")
    assert parts.key == "abc123"
    assert parts.filter == ".mkv,.mp4"
    assert parts.route_parts == ("torrents",)


def test_source_first_means_no_key_in_path():
    parts = split_key_and_filter("/torrents/.hidden/")
    assert not parts.key_in_path
    assert parts.filter is None


def test_nsz_filter_pulls_in_nsp():
    assert split_key_and_filter("/k/.nsz/").filter == ".nsz,.nsp"
    assert split_key_and_filter("/k/.nsz,.nsp/").filter == ".nsz,.nsp"


def test_query_defaults():
    query = parse_query({}, default_limit=2000, max_limit=10000)
    assert query.limit == 2000
    assert query.column is SortColumn.NAME
    assert query.order is SortOrder.ASC
    assert query.filter is None and query.flags is None
    assert query.key == ""


def test_query_values_and_passthrough():
    params = {"key": "k", "filter": "mkv", "limit": "5", "C": "S", "O": "D"}
    query = parse_query(params, default_limit=2000, max_limit=10000)

    assert (query.key, query.filter, query.limit) == ("k", "mkv", 5)
    assert (query.column, query.order) == (SortColumn.SIZE, SortOrder.DESC)
    assert query.passthrough == "key=k&filter=mkv&limit=5"


@pytest.mark.parametrize(("raw", "expected"), [("0", 1), ("-4", 1), ("99999", 10000), ("", 2000)])
def test_limit_is_clamped(raw, expected):
    assert parse_query({"limit": raw}, default_limit=2000, max_limit=10000).limit == expected


def test_bad_limit_rejected():
    with pytest.raises(BadRequest):
        parse_query({"limit": "lots"}, default_limit=2000, max_limit=10000)


def test_unknown_sort_values_fall_back():
    query = parse_query({"C": "X", "O": "Z"}, default_limit=1, max_limit=1)
    assert (query.column, query.order) == (SortColumn.NAME, SortOrder.ASC)
