"""Remote title catalog: conditional download and parsing of titles/versions JSON."""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import requests

from .exceptions import CatalogError
from .progress import ProgressCallback, noop_progress
from .titleid import BASE, DLC, base_title_id, normalize_title_id, title_type

logger = logging.getLogger(__name__)

TITLES_JSON_URL = "https://tinfoil.media/repo/db/titles.json"
VERSIONS_JSON_URL = "https://tinfoil.media/repo/db/versions.json"
TITLES_JSON_FILENAME = "titles.json"
VERSIONS_JSON_FILENAME = "versions.json"

REQUEST_TIMEOUT = (10, 120)


@dataclass(frozen=True)
class TitleRecord:
    """One entry of the remote title list."""

    id: str
    name: str = ""
    icon_url: str = ""
    banner_url: str = ""
    region: str = ""
    release_date: str = ""
    is_demo: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TitleRecord":
        return cls(
            id=normalize_title_id(data.get("id")),
            name=(data.get("name") or "").strip(),
            icon_url=data.get("iconUrl") or "",
            banner_url=data.get("bannerUrl") or "",
            region=data.get("region") or "",
            release_date=parse_release_date(data.get("releaseDate")),
            is_demo=bool(data.get("isDemo", False)),
        )


@dataclass
class CatalogTitle:
    """A catalog title with its known updates and DLC."""

    attributes: TitleRecord
    updates: dict[int, str] = field(default_factory=dict)  # version -> release date
    latest_update: int = 0
    dlc: dict[str, "CatalogTitle"] = field(default_factory=dict)

    @property
    def has_update_history(self) -> bool:
        return bool(self.updates)

    def set_versions(self, versions: dict[int, str]) -> None:
        self.updates = dict(versions)
        self.latest_update = max(versions) if versions else 0


@dataclass
class Catalog:
    """Parsed remote catalog keyed by normalized base title id."""

    titles: dict[str, CatalogTitle] = field(default_factory=dict)

    @property
    def title_count(self) -> int:
        return len(self.titles)

    def get(self, title_id: str) -> CatalogTitle | None:
        return self.titles.get(normalize_title_id(title_id))


def parse_release_date(value: Any) -> str:
    """Turn a yyyymmdd int/str into YYYY-MM-DD; empty when unparsable."""
    if value is None or value == "":
        return ""
    try:
        return datetime.strptime(str(value).strip(), "%Y%m%d").strftime("%Y-%m-%d")
    except ValueError:
        return ""


def create_catalog(titles_data: dict[str, Any], versions_data: dict[str, Any]) -> Catalog:
    """
    Build a Catalog from the decoded titles and versions documents.

    DLC attach to their base title (a placeholder base is created when the
    base record has not been seen yet). Duplicate ids: last write wins.
    """
    catalog = Catalog()
    pending_dlc: list[TitleRecord] = []

    for key, entry in titles_data.items():
        if not isinstance(entry, dict):
            continue
        record = TitleRecord.from_dict(entry)
        if not record.id:
            # Malformed entry: keep it addressable so it can be filtered later
            catalog.titles[f"#{key}"] = CatalogTitle(attributes=record)
            continue
        try:
            kind = title_type(record.id)
        except ValueError:
            catalog.titles[record.id] = CatalogTitle(attributes=record)
            continue

        if kind == BASE:
            existing = catalog.titles.get(record.id)
            if existing is not None:
                existing.attributes = record
            else:
                catalog.titles[record.id] = CatalogTitle(attributes=record)
        elif kind == DLC:
            pending_dlc.append(record)

    for record in pending_dlc:
        base_id = base_title_id(record.id)
        base = catalog.titles.get(base_id)
        if base is None:
            base = CatalogTitle(attributes=TitleRecord(id=base_id))
            catalog.titles[base_id] = base
        base.dlc[record.id] = CatalogTitle(attributes=record)

    for raw_id, raw_versions in versions_data.items():
        title_id = normalize_title_id(raw_id)
        if not isinstance(raw_versions, dict):
            continue
        versions = _parse_versions(raw_versions)
        try:
            kind = title_type(title_id)
        except ValueError:
            continue
        if kind == BASE:
            base = catalog.titles.get(title_id)
            if base is not None:
                base.set_versions(versions)
        elif kind == DLC:
            base = catalog.titles.get(base_title_id(title_id))
            if base is not None and title_id in base.dlc:
                base.dlc[title_id].set_versions(versions)
        else:
            base = catalog.titles.get(base_title_id(title_id))
            if base is not None and not base.updates:
                base.set_versions(versions)

    return catalog


def _parse_versions(raw_versions: dict[str, Any]) -> dict[int, str]:
    versions: dict[int, str] = {}
    for version_str, release_date in raw_versions.items():
        try:
            version = int(version_str)
        except (TypeError, ValueError):
            continue
        if version > 0:
            versions[version] = release_date or ""
    return versions


def load_and_update_file(
    url: str,
    path: Path,
    etag: str = "",
    session: requests.Session | None = None,
) -> tuple[Path, str]:
    """
    Conditionally download url to path.

    Sends If-None-Match when an etag is held and the file exists. A 304
    keeps the local file. Returns (path, etag to store).
    """
    http = session or requests.Session()
    headers = {}
    if etag and path.exists():
        headers["If-None-Match"] = etag

    try:
        response = http.get(url, headers=headers, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as e:
        raise CatalogError(f"Failed to download {url}: {e}")

    if response.status_code == 304:
        logger.info("%s not modified, using %s", url, path)
        return path, etag
    if response.status_code != 200:
        raise CatalogError(f"Failed to download {url}: HTTP {response.status_code}")

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(response.content)
        os.replace(tmp_name, path)
    except OSError as e:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise CatalogError(f"Failed to save {path}: {e}")

    new_etag = response.headers.get("ETag", "")
    logger.info("Downloaded %s to %s", url, path)
    return path, new_etag


def load_json_file(path: Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise CatalogError(f"Failed to parse {path.name}: {e}")
    if not isinstance(data, dict):
        raise CatalogError(f"Unexpected content in {path.name}: expected a JSON object")
    return data


class CatalogFetcher:
    """Downloads the two catalog documents and turns them into a Catalog."""

    def __init__(self, data_dir: Path, session: requests.Session | None = None):
        self.data_dir = Path(data_dir)
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": "switch-library-sync/0.1.0"})

    def refresh(
        self,
        titles_url: str = TITLES_JSON_URL,
        versions_url: str = VERSIONS_JSON_URL,
        titles_etag: str = "",
        versions_etag: str = "",
        on_progress: ProgressCallback | None = None,
    ) -> tuple[Catalog, str, str]:
        """
        Fetch both documents and parse them.

        Returns (catalog, titles_etag, versions_etag). Any fetch failure
        raises CatalogError before a catalog is built.
        """
        progress = on_progress or noop_progress

        progress(1, 4, f"Downloading {TITLES_JSON_FILENAME}")
        try:
            titles_path, new_titles_etag = load_and_update_file(
                titles_url, self.data_dir / TITLES_JSON_FILENAME, titles_etag, self.session
            )
        except CatalogError as e:
            raise CatalogError(f"failed to download switch titles [reason: {e}]")

        progress(2, 4, f"Downloading {VERSIONS_JSON_FILENAME}")
        try:
            versions_path, new_versions_etag = load_and_update_file(
                versions_url, self.data_dir / VERSIONS_JSON_FILENAME, versions_etag, self.session
            )
        except CatalogError as e:
            raise CatalogError(f"failed to download switch updates [reason: {e}]")

        progress(3, 4, "Processing switch titles and updates ...")
        catalog = create_catalog(load_json_file(titles_path), load_json_file(versions_path))

        progress(4, 4, "Finishing up...")
        logger.info("Catalog loaded with %d titles", catalog.title_count)
        return catalog, new_titles_etag, new_versions_etag
