"""Settings file handling."""

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from .catalog import TITLES_JSON_URL, VERSIONS_JSON_URL
from .exceptions import SettingsError
from .titleid import normalize_id_set

SETTINGS_FILENAME = "settings.json"
DATA_DIR_ENV = "SLS_DATA_DIR"
DEFAULT_DATA_DIR = Path.home() / ".switch-library-sync"


def default_data_dir() -> Path:
    return Path(os.environ.get(DATA_DIR_ENV) or DEFAULT_DATA_DIR)


@dataclass
class OrganizeOptions:
    create_folder_per_game: bool = False
    rename_files: bool = False
    delete_empty_folders: bool = False
    delete_old_update_files: bool = False
    folder_name_template: str = "{TITLE_NAME}"
    switch_safe_file_names: bool = True
    file_name_template: str = "{TITLE_NAME} ({DLC_NAME})[{TITLE_ID}][v{VERSION}]"
    output_folder: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OrganizeOptions":
        defaults = cls()
        return cls(**{f.name: data.get(f.name, getattr(defaults, f.name)) for f in fields(cls)})


@dataclass
class AppSettings:
    folder: str = ""
    scan_folders: list[str] = field(default_factory=list)
    scan_recursively: bool = True
    hide_demo_games: bool = True
    ignore_dlc_updates: bool = False
    ignore_dlc_title_ids: list[str] = field(default_factory=list)
    ignore_update_title_ids: list[str] = field(default_factory=list)
    titles_json_url: str = TITLES_JSON_URL
    versions_json_url: str = VERSIONS_JSON_URL
    titles_etag: str = ""
    versions_etag: str = ""
    organize_options: OrganizeOptions = field(default_factory=OrganizeOptions)

    def to_dict(self) -> dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["organize_options"] = self.organize_options.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AppSettings":
        defaults = cls()
        values = {}
        for f in fields(cls):
            if f.name == "organize_options":
                continue
            values[f.name] = data.get(f.name, getattr(defaults, f.name))
        for list_field in ("scan_folders", "ignore_dlc_title_ids", "ignore_update_title_ids"):
            if not isinstance(values[list_field], list):
                raise SettingsError(f"'{list_field}' must be a list")
        values["organize_options"] = OrganizeOptions.from_dict(data.get("organize_options") or {})
        return cls(**values)

    def all_scan_folders(self) -> list[str]:
        """Additional scan folders followed by the main folder, without blanks or repeats."""
        folders = []
        for folder in [*self.scan_folders, self.folder]:
            if folder and folder not in folders:
                folders.append(folder)
        return folders

    @property
    def dlc_ignore_set(self) -> set[str]:
        return normalize_id_set(self.ignore_dlc_title_ids)

    @property
    def update_ignore_set(self) -> set[str]:
        return normalize_id_set(self.ignore_update_title_ids)

    @property
    def game_ignore_set(self) -> set[str]:
        return self.dlc_ignore_set | self.update_ignore_set


class SettingsStore:
    """Reads and writes settings.json in the application data folder."""

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self.settings_file = self.data_dir / SETTINGS_FILENAME

    def exists(self) -> bool:
        return self.settings_file.exists()

    def load(self) -> AppSettings:
        """Load settings, falling back to defaults when no file exists."""
        if not self.settings_file.exists():
            return AppSettings()
        try:
            with open(self.settings_file, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise SettingsError(f"Invalid settings file {self.settings_file}: {e}")
        except OSError as e:
            raise SettingsError(f"Cannot read settings file {self.settings_file}: {e}")
        if not isinstance(data, dict):
            raise SettingsError(f"Invalid settings file {self.settings_file}: expected an object")
        return AppSettings.from_dict(data)

    def save(self, settings: AppSettings) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        with open(self.settings_file, "w", encoding="utf-8") as f:
            json.dump(settings.to_dict(), f, indent=2)

    def save_etags(self, titles_etag: str, versions_etag: str) -> bool:
        """
        Persist new cache validators.

        Only writes when a value changed; returns whether it did.
        """
        settings = self.load()
        if settings.titles_etag == titles_etag and settings.versions_etag == versions_etag:
            return False
        settings.titles_etag = titles_etag
        settings.versions_etag = versions_etag
        self.save(settings)
        return True
