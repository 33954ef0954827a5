"""Service layer - the library operations used by the CLI and the web UI."""

import logging
from dataclasses import dataclass, field
from pathlib import Path

import requests

from .catalog import Catalog, CatalogFetcher
from .inventory import Inventory, LibraryView, build_inventory, build_library_view
from .organizer import (
    FileMover,
    OrganizeResult,
    UpdateDeleter,
    delete_empty_folders,
    delete_old_updates,
    old_update_files,
    organize_library,
    titles_to_organize,
    validate_options,
)
from .progress import MonotonicProgress, ProgressCallback, noop_progress, stage_progress
from .reconcile import IncompleteTitle, MissingTitle, missing_dlc, missing_games, missing_updates
from .scanner import FolderScanner, PackageReader, ScanCache
from .settings import AppSettings, SettingsStore, default_data_dir
from .state import LibraryState

logger = logging.getLogger(__name__)


@dataclass
class CatalogResult:
    title_count: int
    titles_etag: str
    versions_etag: str
    etags_saved: bool


@dataclass
class ScanResult:
    view: LibraryView
    hard: bool
    parsed_files: int
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            **self.view.to_dict(),
            "hard": self.hard,
            "parsed_files": self.parsed_files,
            "warnings": self.warnings,
        }


def _with_logging(on_progress: ProgressCallback | None) -> ProgressCallback:
    sink = on_progress or noop_progress

    def progress(curr: int, total: int, message: str) -> None:
        logger.debug("%s (%d/%d)", message, curr, total)
        sink(curr, total, message)

    return MonotonicProgress(progress)


class LibraryService:
    """Owns the shared library state and runs every library operation."""

    def __init__(
        self,
        data_dir: Path | None = None,
        session: requests.Session | None = None,
        reader: PackageReader | None = None,
        mover: FileMover | None = None,
        deleter: UpdateDeleter | None = None,
        state: LibraryState | None = None,
    ):
        self.data_dir = Path(data_dir) if data_dir else default_data_dir()
        self.settings_store = SettingsStore(self.data_dir)
        self.state = state or LibraryState()
        self._session = session
        self._reader = reader
        self._mover = mover
        self._deleter = deleter
        self.last_parse_count = 0

    def load_settings(self) -> AppSettings:
        return self.settings_store.load()

    def save_settings(self, settings: AppSettings) -> None:
        self.settings_store.save(settings)
        logger.info("Settings saved to %s", self.settings_store.settings_file)

    def update_catalog(self, on_progress: ProgressCallback | None = None) -> CatalogResult:
        """
        Refresh the title database from the remote documents.

        On failure the previously loaded catalog stays in place.
        """
        settings = self.load_settings()
        fetcher = CatalogFetcher(self.data_dir, self._session)
        logger.info("Updating title database")
        catalog, titles_etag, versions_etag = fetcher.refresh(
            settings.titles_json_url,
            settings.versions_json_url,
            settings.titles_etag,
            settings.versions_etag,
            on_progress=_with_logging(on_progress),
        )
        etags_saved = self.settings_store.save_etags(titles_etag, versions_etag)
        self.state.set_catalog(catalog)
        logger.info("Title database updated: %d titles", catalog.title_count)
        return CatalogResult(catalog.title_count, titles_etag, versions_etag, etags_saved)

    def clear_scan_cache(self) -> None:
        """Discard persisted parse results; the next scan re-reads every file."""
        with self.state.locked():
            ScanCache(self.data_dir).clear()
        logger.info("Scan data cleared")

    def update_library(
        self, hard: bool = False, on_progress: ProgressCallback | None = None
    ) -> ScanResult:
        """Scan the configured folders and replace the local inventory."""
        settings = self.load_settings()
        if hard:
            self.clear_scan_cache()

        folders = settings.all_scan_folders()
        logger.info("Scanning %d folder(s)%s", len(folders), " (hard rescan)" if hard else "")
        scanner = FolderScanner(ScanCache(self.data_dir), self._reader)
        inventory = build_inventory(
            scanner,
            folders,
            recursive=settings.scan_recursively,
            ignore_cache=hard,
            on_progress=_with_logging(on_progress),
        )
        self.last_parse_count = scanner.parse_count
        self.state.set_inventory(inventory)

        catalog, _ = self.state.snapshot()
        warnings = []
        if catalog is None:
            warnings.append("Title database not loaded; names and icons may be incomplete.")
            logger.warning(warnings[-1])
        view = build_library_view(inventory, catalog)
        logger.info("Local library updated. %d files processed.", view.num_files)
        return ScanResult(view=view, hard=hard, parsed_files=scanner.parse_count, warnings=warnings)

    def library_view(self) -> LibraryView:
        catalog, inventory = self.state.require(catalog=False)
        return build_library_view(inventory, catalog)

    def get_missing_dlc(self) -> list[IncompleteTitle]:
        catalog, inventory = self.state.require()
        settings = self.load_settings()
        return missing_dlc(inventory, catalog, settings.dlc_ignore_set)

    def get_missing_updates(self) -> list[IncompleteTitle]:
        catalog, inventory = self.state.require()
        settings = self.load_settings()
        return missing_updates(
            inventory, catalog, settings.update_ignore_set, settings.ignore_dlc_updates
        )

    def get_missing_games(self) -> list[MissingTitle]:
        catalog, inventory = self.state.require()
        settings = self.load_settings()
        return missing_games(inventory, catalog, settings.game_ignore_set, settings.hide_demo_games)

    def organize(self, on_progress: ProgressCallback | None = None) -> OrganizeResult:
        """
        Move library files per the organize templates.

        Invalid templates fail before anything moves. Stale updates are
        deleted afterwards when configured; delete failures do not undo moves.
        The library is rescanned at the end so the held inventory matches
        the new file locations.
        """
        settings = self.load_settings()
        options = settings.organize_options
        validate_options(options)
        catalog, inventory = self.state.require()

        num_titles = len(titles_to_organize(inventory))
        num_deletes = len(old_update_files(inventory)) if options.delete_old_update_files else 0
        total = num_titles + num_deletes + 1
        progress = _with_logging(on_progress)

        output_folder = options.output_folder or settings.folder
        logger.info("Organizing library into %s", output_folder)
        result = organize_library(
            inventory,
            catalog,
            options,
            output_folder,
            mover=self._mover,
            on_progress=stage_progress(progress, 0, total),
        )
        if options.delete_empty_folders:
            delete_empty_folders(settings.all_scan_folders())
        if options.delete_old_update_files:
            delete_old_updates(
                inventory,
                result,
                deleter=self._deleter,
                on_progress=stage_progress(progress, num_titles, total),
            )

        progress(total, total, "Rescanning library")
        self.update_library(hard=True)
        logger.info(
            "Library organization completed: %d titles, %d files moved, %d errors",
            result.titles_processed,
            result.files_moved,
            len(result.errors) + len(result.delete_errors),
        )
        return result

    def snapshot(self) -> tuple[Catalog | None, Inventory | None]:
        return self.state.snapshot()
