from typing import Optional

import httpx
import pytest

from torbox_index.upstream import TorBoxClient

API = "https://api.test/v1/api"


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_file(file_id: int, name: Optional[str], size: Optional[int] = 100, short_name: Optional[str] = None) -> dict:
    return {"id": file_id, "name": name, "short_name": short_name, "size": size}


def make_item(item_id: int, name: Optional[str], files: list, download_present: Optional[bool] = True) -> dict:
    return {"id": item_id, "name": name, "files": files, "download_present": download_present}


class FakeTorBox:
    """Stands in for the remote API behind ``httpx.MockTransport``.

    ``items`` maps a source name to its raw items. ``statuses`` queues HTTP
    statuses per source that are served before any real answer, and
    ``envelopes`` replaces the answer for a source entirely.
    """

    def __init__(self, items: Optional[dict] = None):
        self.items = items or {}
        self.statuses: dict[str, list[int]] = {}
        self.envelopes: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []

    def calls_for(self, source: str) -> list[httpx.Request]:
        return [request for request in self.requests if request.url.path.split("/")[-2] == source]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        source = request.url.path.split("/")[-2]

        queued = self.statuses.get(source)
        if queued:
            return httpx.Response(queued.pop(0), text="upstream trouble")
        if source in self.envelopes:
            return httpx.Response(200, json=self.envelopes[source])

        items = self.items.get(source, [])
        params = request.url.params
        if "id" in params:
            wanted = int(params["id"])
            data = [item for item in items if item["id"] == wanted]
        else:
            offset = int(params.get("offset", 0))
            limit = int(params.get("limit", 1000))
            data = items[offset : offset + limit]
        return httpx.Response(200, json={"success": True, "error": None, "detail": "ok", "data": data})


def make_client(fake, **kwargs) -> TorBoxClient:
    kwargs.setdefault("retry_base_delay", 0)
    kwargs.setdefault("retry_max_delay", 0)
    return TorBoxClient(
        base_url=API,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(fake)),
        **kwargs,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_api() -> FakeTorBox:
    return FakeTorBox(
        {
            "torrents": [
                make_item(1, "Alpha", [make_file(10, "Alpha/a.mkv", 1000)]),
                make_item(2, "beta", [make_file(20, "beta/b.mkv", 500)]),
                make_item(3, "empty", []),
                make_item(4, "gone", [make_file(40, "gone.mkv")], download_present=False),
            ],
            "webdl": [
                make_item(7, "", [make_file(70, "docs/manual.pdf", 2048, short_name="manual.pdf")]),
            ],
            "usenet": [
                make_item(9, "Gamma", [make_file(90, "g.mp4", 300), make_file(91, "g.srt", 10)]),
            ],
        }
    )
