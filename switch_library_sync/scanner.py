"""
Folder scanner and file-name based package reader.

This is the default filesystem collaborator of the inventory builder. It
walks the scan folders, reads title ids and versions for each package and
keeps a persisted parse cache keyed by path, size and modification time.
"""

import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Protocol

from .exceptions import ScanError
from .progress import ProgressCallback, noop_progress
from .titleid import normalize_title_id

logger = logging.getLogger(__name__)

CACHE_FILENAME = "scan-cache.json"

PACKAGE_EXTENSIONS = {".nsp", ".nsz", ".xci", ".xcz"}

TITLE_ID_TOKEN_RE = re.compile(r"\[([0-9A-Fa-f]{16})\]")
VERSION_TOKEN_RE = re.compile(r"\[v(\d+)\]", re.IGNORECASE)
SPLIT_PART_RE = re.compile(r"^\d{2}$")


class UnsupportedFileError(Exception):
    """Raised by a reader for files it cannot attribute to a title."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


@dataclass(frozen=True)
class PackageContent:
    """One title's content inside a package file."""

    title_id: str
    version: int = 0
    name: str = ""
    display_version: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "title_id": self.title_id,
            "version": self.version,
            "name": self.name,
            "display_version": self.display_version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PackageContent":
        return cls(
            title_id=normalize_title_id(data.get("title_id", "")),
            version=int(data.get("version", 0)),
            name=data.get("name", ""),
            display_version=data.get("display_version", ""),
        )


@dataclass
class ScannedPackage:
    """A package file found on disk together with what it contains."""

    base_folder: str
    file_name: str
    size: int = 0
    contents: list[PackageContent] = field(default_factory=list)
    split: bool = False

    @property
    def path(self) -> str:
        return os.path.join(self.base_folder, self.file_name)

    @property
    def extension(self) -> str:
        return os.path.splitext(self.file_name)[1].lower().lstrip(".")

    @property
    def multi_content_file(self) -> bool:
        return len(self.contents) > 1


@dataclass
class ScanFailure:
    """A file or folder that could not be read."""

    base_folder: str
    file_name: str
    reason: str
    is_folder: bool = False

    @property
    def path(self) -> str:
        return os.path.join(self.base_folder, self.file_name)


class PackageReader(Protocol):
    def read(self, path: str) -> list[PackageContent]:
        ...


def parse_title_name_from_file_name(file_name: str) -> str:
    """Best-effort display name: the text before the first bracket."""
    stem = os.path.splitext(os.path.basename(file_name))[0]
    name = re.split(r"[\[(]", stem, maxsplit=1)[0]
    return name.replace("_", " ").strip()


class FilenamePackageReader:
    """
    Reads title ids and versions from tokens in the file name.

    Expected naming: "Name [0100ABCD12340000][v65536].nsp". Several id
    tokens mark a multi-content package.
    """

    def read(self, path: str) -> list[PackageContent]:
        file_name = os.path.basename(path.rstrip("/\\"))
        ext = os.path.splitext(file_name)[1].lower()
        if ext not in PACKAGE_EXTENSIONS:
            raise UnsupportedFileError("unsupported file type")

        title_ids = TITLE_ID_TOKEN_RE.findall(file_name)
        if not title_ids:
            raise UnsupportedFileError("unable to determine title id from file name")

        versions = [int(v) for v in VERSION_TOKEN_RE.findall(file_name)]
        name = parse_title_name_from_file_name(file_name)

        contents = []
        for i, title_id in enumerate(title_ids):
            version = versions[i] if i < len(versions) else (versions[-1] if versions else 0)
            contents.append(
                PackageContent(
                    title_id=normalize_title_id(title_id),
                    version=version,
                    name=name,
                )
            )
        return contents


class ScanCache:
    """Persisted parse results keyed by absolute file path."""

    def __init__(self, data_dir: Path):
        self.cache_file = Path(data_dir) / CACHE_FILENAME
        self.entries: dict[str, dict[str, Any]] = {}
        self._loaded = False

    def load(self) -> None:
        self._loaded = True
        if not self.cache_file.exists():
            self.entries = {}
            return
        try:
            with open(self.cache_file, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable scan cache %s: %s", self.cache_file, e)
            self.entries = {}
            return
        self.entries = data.get("files", {}) if isinstance(data, dict) else {}

    def save(self) -> None:
        """Write the cache through a temp file so readers never see a partial one."""
        self.cache_file.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.cache_file.name}.", dir=self.cache_file.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump({"version": 1, "files": self.entries}, f, indent=2)
            os.replace(tmp_name, self.cache_file)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def clear(self) -> None:
        """Forget every cached parse and delete the cache file."""
        self.entries = {}
        self._loaded = True
        if self.cache_file.exists():
            self.cache_file.unlink()

    def get(self, path: str, size: int, mtime: float) -> tuple[list[PackageContent], str] | None:
        """Cached (contents, skip reason) for an unchanged file, else None."""
        if not self._loaded:
            self.load()
        entry = self.entries.get(path)
        if not entry or entry.get("size") != size or entry.get("mtime") != mtime:
            return None
        contents = [PackageContent.from_dict(c) for c in entry.get("contents", [])]
        return contents, entry.get("reason", "")

    def put(
        self, path: str, size: int, mtime: float, contents: list[PackageContent], reason: str = ""
    ) -> None:
        self.entries[path] = {
            "size": size,
            "mtime": mtime,
            "contents": [c.to_dict() for c in contents],
        }
        if reason:
            self.entries[path]["reason"] = reason

    def prune(self, seen: set[str]) -> None:
        for path in list(self.entries):
            if path not in seen:
                del self.entries[path]


class FolderScanner:
    """Walks scan folders and produces ScannedPackage / ScanFailure items."""

    def __init__(self, cache: ScanCache, reader: PackageReader | None = None):
        self.cache = cache
        self.reader = reader or FilenamePackageReader()
        self.parse_count = 0

    def collect_files(self, folder: str, recursive: bool) -> list[tuple[str, str, bool]]:
        """
        List (base_folder, file_name, split) entries under folder.

        Directories named like a package whose children are numbered parts
        are returned as a single split entry.
        """
        if not os.path.isdir(folder):
            raise ScanError(f"folder does not exist: {folder}")

        files = []
        if recursive:
            for root, dirs, filenames in os.walk(folder):
                for d in list(dirs):
                    if _is_split_dir(os.path.join(root, d)):
                        files.append((root, d, True))
                        dirs.remove(d)
                for filename in filenames:
                    files.append((root, filename, False))
        else:
            for filename in os.listdir(folder):
                filepath = os.path.join(folder, filename)
                if os.path.isfile(filepath):
                    files.append((folder, filename, False))
                elif _is_split_dir(filepath):
                    files.append((folder, filename, True))
        files.sort()
        return files

    def scan(
        self,
        folders: list[str],
        recursive: bool = True,
        ignore_cache: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> Iterator[ScannedPackage | ScanFailure]:
        """Yield one item per file found; unreadable folders yield a failure."""
        progress = on_progress or noop_progress

        entries: list[tuple[str, str, bool]] = []
        collected: set[str] = set()
        for folder in folders:
            try:
                for entry in self.collect_files(folder, recursive):
                    # nested scan folders reach the same file twice
                    key = os.path.normcase(os.path.realpath(os.path.join(entry[0], entry[1])))
                    if key not in collected:
                        collected.add(key)
                        entries.append(entry)
            except (ScanError, OSError) as e:
                logger.warning("Skipping folder %s: %s", folder, e)
                parent, name = os.path.split(folder)
                yield ScanFailure(parent, name, f"folder could not be scanned: {e}", is_folder=True)

        total = len(entries)
        seen: set[str] = set()
        for i, (base_folder, file_name, split) in enumerate(entries, start=1):
            progress(i, total, f"Scanning {file_name}")
            path = os.path.join(base_folder, file_name)
            seen.add(path)
            try:
                size, mtime = _file_signature(path, split)
                contents = self._read(path, size, mtime, ignore_cache)
            except UnsupportedFileError as e:
                yield ScanFailure(base_folder, file_name, e.reason)
                continue
            except OSError as e:
                yield ScanFailure(base_folder, file_name, f"file could not be read: {e}")
                continue
            yield ScannedPackage(base_folder, file_name, size, contents, split)

        if total == 0:
            progress(0, 0, "No files found")

        self.cache.prune(seen)
        try:
            self.cache.save()
        except OSError as e:
            logger.warning("Failed to save scan cache: %s", e)

    def _read(self, path: str, size: int, mtime: float, ignore_cache: bool) -> list[PackageContent]:
        cached = None if ignore_cache else self.cache.get(path, size, mtime)
        if cached is not None:
            contents, reason = cached
            if reason:
                raise UnsupportedFileError(reason)
            return contents

        self.parse_count += 1
        try:
            contents = self.reader.read(path)
        except UnsupportedFileError as e:
            self.cache.put(path, size, mtime, [], e.reason)
            raise
        self.cache.put(path, size, mtime, contents)
        return contents


def _is_split_dir(path: str) -> bool:
    if os.path.splitext(path)[1].lower() not in PACKAGE_EXTENSIONS:
        return False
    try:
        children = os.listdir(path)
    except OSError:
        return False
    return bool(children) and all(SPLIT_PART_RE.match(c) for c in children)


def _file_signature(path: str, split: bool) -> tuple[int, float]:
    if not split:
        st = os.stat(path)
        return st.st_size, st.st_mtime
    size = 0
    mtime = 0.0
    for part in os.listdir(path):
        st = os.stat(os.path.join(path, part))
        size += st.st_size
        mtime = max(mtime, st.st_mtime)
    return size, mtime
