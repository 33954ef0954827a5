"""Organize library files into folders and names built from templates."""

import logging
import os
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from .catalog import Catalog
from .exceptions import OrganizeTemplateError
from .inventory import GameFileGroup, Inventory, PackageFile
from .progress import ProgressCallback, noop_progress
from .settings import OrganizeOptions
from .titleid import BASE, UPDATE, title_type, version_to_text

logger = logging.getLogger(__name__)

PLACEHOLDERS = (
    "{TITLE_NAME}",
    "{TITLE_ID}",
    "{VERSION}",
    "{VERSION_TXT}",
    "{REGION}",
    "{TYPE}",
    "{DLC_NAME}",
)

TYPE_LABELS = {BASE: "BASE", UPDATE: "UPD"}

UNSAFE_CHARS_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
EMPTY_BRACKETS_RE = re.compile(r"\(\s*\)|\[\s*\]")


@dataclass
class OrganizeResult:
    titles_processed: int = 0
    moved: dict[str, str] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    delete_errors: list[str] = field(default_factory=list)

    @property
    def files_moved(self) -> int:
        return len(self.moved)


class FileMover(Protocol):
    """Moves one title's files; every completed move is recorded in moved."""

    def move_title(
        self, group: GameFileGroup, plan: list[tuple[str, str]], moved: dict[str, str]
    ) -> None:
        ...


class UpdateDeleter(Protocol):
    def delete(self, path: str) -> None:
        ...


class FileSystemMover:
    """Moves each planned file, creating destination folders as needed."""

    def move_title(
        self, group: GameFileGroup, plan: list[tuple[str, str]], moved: dict[str, str]
    ) -> None:
        for src, dest in plan:
            if os.path.normcase(os.path.abspath(src)) == os.path.normcase(os.path.abspath(dest)):
                continue
            if os.path.exists(dest):
                raise FileExistsError(f"destination already exists: {dest}")
            Path(dest).parent.mkdir(parents=True, exist_ok=True)
            shutil.move(src, dest)
            moved[src] = dest


class FileSystemDeleter:
    def delete(self, path: str) -> None:
        if os.path.isdir(path):
            shutil.rmtree(path)
        else:
            os.remove(path)


def has_placeholder(template: str) -> bool:
    return any(p in template for p in PLACEHOLDERS)


def validate_options(options: OrganizeOptions) -> None:
    """Raise OrganizeTemplateError unless every enabled template is usable."""
    if options.create_folder_per_game and not has_placeholder(options.folder_name_template):
        raise OrganizeTemplateError(
            "The folder name template must contain at least one placeholder, "
            f"e.g. {{TITLE_NAME}} (got {options.folder_name_template!r})"
        )
    if options.rename_files and not has_placeholder(options.file_name_template):
        raise OrganizeTemplateError(
            "The file name template must contain at least one placeholder, "
            f"e.g. {{TITLE_NAME}} (got {options.file_name_template!r})"
        )


def is_options_valid(options: OrganizeOptions) -> bool:
    try:
        validate_options(options)
    except OrganizeTemplateError:
        return False
    return True


def apply_template(template: str, values: dict[str, str], safe_names: bool = False) -> str:
    """Fill placeholders and clean the result so it is usable as a path component."""
    result = template
    for key, value in values.items():
        result = result.replace("{" + key + "}", value)
    result = EMPTY_BRACKETS_RE.sub("", result)
    result = UNSAFE_CHARS_RE.sub("", result)
    if safe_names:
        result = result.encode("ascii", "ignore").decode("ascii")
    result = re.sub(r"\s{2,}", " ", result).strip(" .")
    return result


def _title_values(title_id: str, group: GameFileGroup, catalog: Catalog) -> dict[str, str]:
    title = catalog.get(title_id)
    name = ""
    region = ""
    if title is not None:
        name = title.attributes.name
        region = title.attributes.region
    if not name and group.file is not None:
        name = group.file.content.name
    return {"TITLE_NAME": name or title_id.upper(), "REGION": region}


def _file_values(
    entry: PackageFile, title_values: dict[str, str], group: GameFileGroup, catalog: Catalog
) -> dict[str, str]:
    content = entry.content
    kind = title_type(content.title_id)
    dlc_name = ""
    if kind not in TYPE_LABELS:
        title = catalog.get(group.title_id)
        if title is not None and content.title_id in title.dlc:
            dlc_name = title.dlc[content.title_id].attributes.name
        dlc_name = dlc_name or content.name or content.title_id.upper()
    return {
        **title_values,
        "TITLE_ID": content.title_id.upper(),
        "VERSION": str(content.version),
        "VERSION_TXT": content.display_version or version_to_text(content.version),
        "TYPE": TYPE_LABELS.get(kind, "DLC"),
        "DLC_NAME": dlc_name,
    }


def plan_title(
    group: GameFileGroup,
    catalog: Catalog,
    options: OrganizeOptions,
    output_folder: str,
    already_planned: set[str],
) -> list[tuple[str, str]]:
    """Resolve (source, destination) for every file of one title."""
    title_values = _title_values(group.title_id, group, catalog)
    folder_name = ""
    if options.create_folder_per_game:
        folder_name = apply_template(
            options.folder_name_template, title_values, options.switch_safe_file_names
        ) or group.title_id.upper()

    plan = []
    for entry in group.files():
        src = entry.path
        if src in already_planned:
            continue
        already_planned.add(src)

        dest_dir = os.path.join(output_folder, folder_name) if folder_name else entry.package.base_folder
        file_name = entry.package.file_name
        if options.rename_files and not entry.package.multi_content_file:
            values = _file_values(entry, title_values, group, catalog)
            new_name = apply_template(
                options.file_name_template, values, options.switch_safe_file_names
            )
            if new_name:
                file_name = new_name + os.path.splitext(file_name)[1]
        plan.append((src, os.path.join(dest_dir, file_name)))
    return plan


def titles_to_organize(inventory: Inventory) -> list[str]:
    return sorted(t for t, g in inventory.titles.items() if g.base_exist)


def organize_library(
    inventory: Inventory,
    catalog: Catalog,
    options: OrganizeOptions,
    output_folder: str,
    mover: FileMover | None = None,
    on_progress: ProgressCallback | None = None,
) -> OrganizeResult:
    """
    Move every title that has a base file according to the templates.

    Templates are validated before anything is touched. Per-title failures
    are collected in the result.
    """
    validate_options(options)
    mover = mover or FileSystemMover()
    progress = on_progress or noop_progress
    result = OrganizeResult()

    title_ids = titles_to_organize(inventory)
    total = len(title_ids)
    planned: set[str] = set()
    for i, title_id in enumerate(title_ids, start=1):
        group = inventory.titles[title_id]
        progress(i, total, f"Organizing {title_id.upper()}")
        plan = plan_title(group, catalog, options, output_folder, planned)
        try:
            mover.move_title(group, plan, result.moved)
        except OSError as e:
            logger.error("Failed to organize %s: %s", title_id, e)
            result.errors.append(f"{title_id}: {e}")
            continue
        result.titles_processed += 1

    if total == 0:
        progress(0, 0, "Nothing to organize")
    return result


def delete_empty_folders(roots: list[str]) -> list[str]:
    """Remove empty sub folders under each root; the roots themselves stay."""
    removed = []
    for root in roots:
        if not os.path.isdir(root):
            continue
        for dirpath, _dirs, _files in os.walk(root, topdown=False):
            if os.path.normpath(dirpath) == os.path.normpath(root):
                continue
            try:
                if not os.listdir(dirpath):
                    os.rmdir(dirpath)
                    removed.append(dirpath)
            except OSError as e:
                logger.warning("Could not remove folder %s: %s", dirpath, e)
    return removed


def old_update_files(inventory: Inventory) -> list[PackageFile]:
    """Update files superseded by a newer revision of the same title."""
    files = []
    for title_id in sorted(inventory.titles):
        group = inventory.titles[title_id]
        for version in sorted(group.updates):
            if version == group.latest_update:
                continue
            entry = group.updates[version]
            if not entry.package.multi_content_file:
                files.append(entry)
    return files


def delete_old_updates(
    inventory: Inventory,
    result: OrganizeResult,
    deleter: UpdateDeleter | None = None,
    on_progress: ProgressCallback | None = None,
) -> OrganizeResult:
    """
    Delete every update file except the latest revision of each title.

    Paths moved by the organize pass are followed. Failures are recorded in
    result.delete_errors and do not stop the pass.
    """
    deleter = deleter or FileSystemDeleter()
    progress = on_progress or noop_progress

    targets = [result.moved.get(entry.path, entry.path) for entry in old_update_files(inventory)]
    total = len(targets)
    for i, path in enumerate(targets, start=1):
        progress(i, total, f"Deleting old update {os.path.basename(path)}")
        try:
            deleter.delete(path)
        except OSError as e:
            logger.error("Failed to delete %s: %s", path, e)
            result.delete_errors.append(f"{path}: {e}")
            continue
        result.deleted.append(path)

    if total == 0:
        progress(0, 0, "No old updates to delete")
    return result
