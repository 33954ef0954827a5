"""Local inventory: groups scanned packages by title into base, updates and DLC."""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol

from .catalog import Catalog
from .progress import ProgressCallback, noop_progress
from .scanner import PackageContent, ScanFailure, ScannedPackage, parse_title_name_from_file_name
from .titleid import BASE, DLC, UPDATE, base_title_id, title_type

logger = logging.getLogger(__name__)

BASE_MISSING_REASON = "base file is missing"


@dataclass
class PackageFile:
    """A title's content together with the file it lives in."""

    package: ScannedPackage
    content: PackageContent

    @property
    def path(self) -> str:
        return self.package.path

    @property
    def version(self) -> int:
        return self.content.version


@dataclass
class GameFileGroup:
    """Everything found on disk for one base title id."""

    title_id: str
    base_exist: bool = False
    file: PackageFile | None = None
    updates: dict[int, PackageFile] = field(default_factory=dict)
    latest_update: int = 0
    dlc: dict[str, PackageFile] = field(default_factory=dict)
    multi_content: bool = False
    is_split: bool = False

    @property
    def latest_update_file(self) -> PackageFile | None:
        return self.updates.get(self.latest_update)

    def files(self) -> list[PackageFile]:
        files = [self.file] if self.file else []
        files.extend(self.updates[v] for v in sorted(self.updates))
        files.extend(self.dlc[d] for d in sorted(self.dlc))
        return files


@dataclass(frozen=True)
class SkipEntry:
    """A file that could not be attributed to a title."""

    base_folder: str
    file_name: str
    reason: str

    @property
    def key(self) -> tuple[str, str]:
        return (self.base_folder, self.file_name)

    @property
    def path(self) -> str:
        return os.path.join(self.base_folder, self.file_name)


@dataclass
class Inventory:
    titles: dict[str, GameFileGroup] = field(default_factory=dict)
    skipped: dict[tuple[str, str], SkipEntry] = field(default_factory=dict)
    num_files: int = 0

    def skip(self, base_folder: str, file_name: str, reason: str) -> None:
        entry = SkipEntry(base_folder, file_name, reason)
        self.skipped[entry.key] = entry

    def group(self, title_id: str) -> GameFileGroup:
        group = self.titles.get(title_id)
        if group is None:
            group = GameFileGroup(title_id=title_id)
            self.titles[title_id] = group
        return group


class PackageSource(Protocol):
    """The filesystem collaborator: yields scanned packages and failures."""

    def scan(
        self,
        folders: list[str],
        recursive: bool = True,
        ignore_cache: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> Iterable[ScannedPackage | ScanFailure]:
        ...


def build_inventory(
    source: PackageSource,
    scan_folders: list[str],
    recursive: bool = True,
    ignore_cache: bool = False,
    on_progress: ProgressCallback | None = None,
) -> Inventory:
    """
    Scan folders and assemble a fresh Inventory.

    Scanning is best-effort: unreadable folders and files become skip
    entries instead of errors.
    """
    progress = on_progress or noop_progress
    inventory = Inventory()
    if not scan_folders:
        progress(0, 0, "No folders to scan")
        return inventory

    seen: set[str] = set()
    for item in source.scan(scan_folders, recursive, ignore_cache, progress):
        if item.path in seen:
            continue
        seen.add(item.path)
        if isinstance(item, ScanFailure):
            if not item.is_folder:
                inventory.num_files += 1
            inventory.skip(item.base_folder, item.file_name, item.reason)
            continue
        inventory.num_files += 1
        add_package(inventory, item)

    logger.info(
        "Inventory built: %d titles, %d skipped, %d files",
        len(inventory.titles),
        len(inventory.skipped),
        inventory.num_files,
    )
    return inventory


def add_package(inventory: Inventory, package: ScannedPackage) -> None:
    """Attribute every content of a package to its title group, or skip it."""
    if not package.contents:
        inventory.skip(package.base_folder, package.file_name, "no title content found")
        return

    multi_content = len(package.contents) > 1
    attributed = False
    reasons: list[str] = []

    for content in package.contents:
        try:
            kind = title_type(content.title_id)
            group_id = base_title_id(content.title_id)
        except ValueError as e:
            reasons.append(str(e))
            continue

        group = inventory.group(group_id)
        group.multi_content = group.multi_content or multi_content
        entry = PackageFile(package, content)

        if kind == BASE:
            reason = _add_base(group, entry)
        elif kind == UPDATE:
            reason = _add_update(inventory, group, entry)
        else:
            reason = _add_dlc(inventory, group, entry)

        if reason:
            reasons.append(reason)
        else:
            attributed = True

    if not attributed:
        inventory.skip(package.base_folder, package.file_name, "; ".join(reasons))


def _add_base(group: GameFileGroup, entry: PackageFile) -> str:
    if group.base_exist and group.file is not None:
        if group.file.path == entry.path:
            return ""
        return f"duplicate base file (kept {group.file.path})"
    group.base_exist = True
    group.file = entry
    group.is_split = entry.package.split
    return ""


def _add_update(inventory: Inventory, group: GameFileGroup, entry: PackageFile) -> str:
    previous = group.updates.get(entry.version)
    if previous is not None and previous.path != entry.path:
        _displace(inventory, previous, f"duplicate update v{entry.version} (kept {entry.path})")
    group.updates[entry.version] = entry
    if entry.version >= group.latest_update:
        group.latest_update = entry.version
    return ""


def _add_dlc(inventory: Inventory, group: GameFileGroup, entry: PackageFile) -> str:
    dlc_id = entry.content.title_id
    previous = group.dlc.get(dlc_id)
    if previous is not None and previous.path == entry.path:
        return ""
    if previous is not None:
        if previous.version > entry.version:
            return f"older DLC version v{entry.version} (kept {previous.path})"
        _displace(inventory, previous, f"older DLC version v{previous.version} (kept {entry.path})")
    group.dlc[dlc_id] = entry
    return ""


def _displace(inventory: Inventory, previous: PackageFile, reason: str) -> None:
    """Record a replaced file as skipped unless it still holds other content."""
    package = previous.package
    for group in inventory.titles.values():
        for f in group.files():
            if f.package is package and f is not previous:
                return
    inventory.skip(package.base_folder, package.file_name, reason)


def title_kind(group: GameFileGroup) -> str:
    if group.is_split:
        return "split"
    if group.multi_content:
        return "multi-content"
    if group.file is not None:
        return group.file.package.extension
    return ""


@dataclass
class LibraryRow:
    id: int
    name: str
    version: str
    title_id: str
    path: str
    icon: str = ""
    update: int = 0
    region: str = ""
    type: str = ""
    dlc: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "version": self.version,
            "titleId": self.title_id,
            "path": self.path,
            "icon": self.icon,
            "update": self.update,
            "region": self.region,
            "type": self.type,
            "dlc": self.dlc,
        }


@dataclass
class LibraryView:
    """The unified per-title view: rows, issues and total file count."""

    library_data: list[LibraryRow] = field(default_factory=list)
    issues: list[tuple[str, str]] = field(default_factory=list)
    num_files: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "library_data": [row.to_dict() for row in self.library_data],
            "issues": [{"key": path, "value": reason} for path, reason in self.issues],
            "num_files": self.num_files,
        }


def build_library_view(inventory: Inventory, catalog: Catalog | None = None) -> LibraryView:
    """Join the inventory with catalog metadata into library rows and issues."""
    view = LibraryView(num_files=inventory.num_files)

    for title_id in sorted(inventory.titles):
        group = inventory.titles[title_id]
        if not group.base_exist or group.file is None:
            for f in group.files():
                view.issues.append((f.path, BASE_MISSING_REASON))
            continue

        name = group.file.content.name
        version = group.file.content.display_version
        latest = group.latest_update_file
        if latest is not None and latest.content.display_version:
            version = latest.content.display_version

        icon = region = ""
        dlc_names = []
        catalog_title = catalog.get(title_id) if catalog is not None else None
        if catalog_title is not None:
            if catalog_title.attributes.name:
                name = catalog_title.attributes.name
            icon = catalog_title.attributes.icon_url
            region = catalog_title.attributes.region
        for dlc_id in sorted(group.dlc):
            dlc_name = ""
            if catalog_title is not None and dlc_id in catalog_title.dlc:
                dlc_name = catalog_title.dlc[dlc_id].attributes.name
            dlc_names.append(dlc_name or dlc_id)

        if not name:
            name = parse_title_name_from_file_name(group.file.package.file_name)

        view.library_data.append(
            LibraryRow(
                id=len(view.library_data),
                name=name,
                version=version,
                title_id=title_id,
                path=group.file.path,
                icon=icon,
                update=group.latest_update,
                region=region,
                type=title_kind(group),
                dlc=", ".join(dlc_names),
            )
        )

    for key in sorted(inventory.skipped):
        entry = inventory.skipped[key]
        view.issues.append((entry.path, entry.reason))

    return view
