"""Builders and fakes shared by the tests."""

import json

from switch_library_sync.catalog import create_catalog
from switch_library_sync.scanner import PackageContent, ScanFailure, ScannedPackage

GAME_A = "0100abcd12340000"
GAME_A_UPDATE = "0100abcd12340800"
GAME_A_DLC1 = "0100abcd12341001"
GAME_A_DLC2 = "0100abcd12341002"
GAME_B = "0100000000010000"
GAME_C = "0100000000020000"


def content(title_id: str, version: int = 0, name: str = "") -> PackageContent:
    return PackageContent(title_id=title_id, version=version, name=name)


def package(folder: str, file_name: str, *contents: PackageContent, split: bool = False) -> ScannedPackage:
    return ScannedPackage(folder, file_name, 100, list(contents), split)


class FakeSource:
    """Package source that yields a fixed list of items."""

    def __init__(self, items):
        self.items = list(items)
        self.calls = []

    def scan(self, folders, recursive=True, ignore_cache=False, on_progress=None):
        self.calls.append((list(folders), recursive, ignore_cache))
        total = len(self.items)
        for i, item in enumerate(self.items, start=1):
            if on_progress:
                on_progress(i, total, f"Scanning {item.file_name}")
            yield item


def failure(folder: str, file_name: str, reason: str) -> ScanFailure:
    return ScanFailure(folder, file_name, reason)


def titles_doc(*entries: dict) -> dict:
    return {str(70010000000000 + i): entry for i, entry in enumerate(entries)}


def title(title_id: str, name: str, **extra) -> dict:
    return {"id": title_id.upper(), "name": name, **extra}


def sample_catalog():
    titles = titles_doc(
        title(GAME_A, "Game A", region="US", releaseDate=20200131, iconUrl="a.png"),
        title(GAME_A_DLC1, "Game A Pack 1"),
        title(GAME_A_DLC2, "Game A Pack 2"),
        title(GAME_B, "Game B", region="EU", bannerUrl="b.png"),
    )
    versions = {
        GAME_A: {"65536": "2020-02-01", "196608": "2020-05-01", "327680": "2020-09-01"},
        GAME_A_DLC1: {"65536": "2020-06-01"},
    }
    return create_catalog(titles, versions)


class FakeResponse:
    def __init__(self, status_code: int = 200, body=None, headers=None):
        self.status_code = status_code
        if body is None:
            self.content = b""
        elif isinstance(body, bytes):
            self.content = body
        else:
            self.content = json.dumps(body).encode()
        self.headers = headers or {}


class FakeSession:
    """Routes GET requests by URL to queued responses and records headers."""

    def __init__(self, responses: dict):
        self.responses = {url: list(r) if isinstance(r, list) else [r] for url, r in responses.items()}
        self.headers = {}
        self.requests = []

    def get(self, url, headers=None, timeout=None):
        self.requests.append((url, dict(headers or {})))
        queue = self.responses[url]
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        return response
