from torbox_index.models import ListingEntry
from torbox_index.render import Listing, format_size, render_listing, sort_href, truncate_name


def listing(**overrides):
    values = dict(
        title="Index of /torrents/",
        entries=[ListingEntry(href="1/", name="Alpha/", size=1536, description="1 file(s)")],
        displayed=1,
        total_matched=1,
        limit=10,
        summary_noun="folder(s)",
    )
    values.update(overrides)
    return Listing(**values)


def test_sizes():
    assert format_size(0) == "  - "
    assert format_size(1023) == "1023 "
    assert format_size(1024) == "1.0K"
    assert format_size(5 * 1024**3) == "5.0G"


def test_long_names_are_truncated():
    name = "x" * 200
    assert truncate_name(name) == "x" * 93 + "..>"
    assert truncate_name("short") == "short"


def test_sort_links_keep_other_params():
    assert sort_href("", "N", "D") == "?C=N&O=D"
    assert sort_href("key=k", "S", "A") == "?C=S&O=A&key=k"


def test_listing_page():
    html = render_listing(listing())

    assert "<title>Index of /torrents/</title>" in html
    assert '<a href="1/">Alpha/</a>' in html
    assert "1.5K  1 file(s)" in html
    assert "<address>1 folder(s), 1.5K total</address>" in html
    assert "<!--" not in html


def test_names_are_escaped():
    entry = ListingEntry(href='"><script>', name="<b>bold</b>", size=1)
    html = render_listing(listing(entries=[entry]))

    assert "<script>" not in html
    assert "&lt;b&gt;bold&lt;/b&gt;" in html


def test_truncation_filter_and_errors_are_reported():
    html = render_listing(
        listing(total_matched=25, limit=10, displayed=10, filter_text="mkv", errors=["webdl: unavailable"])
    )

    assert "<!-- truncated: 25 matched, showing first 10 -->" in html
    assert "<!-- filter: mkv -->" in html
    assert "(truncated from 25) | filter: mkv | errors: webdl: unavailable" in html
