"""Compare the local inventory with the catalog: missing DLC, updates and games."""

from dataclasses import asdict, dataclass, field
from typing import Any

from .catalog import Catalog
from .inventory import GameFileGroup, Inventory


@dataclass
class IncompleteTitle:
    """An owned title that lacks known DLC or updates."""

    title_id: str
    name: str
    local_update: int = 0
    latest_update: int = 0
    latest_update_date: str = ""
    missing_dlc: list[str] = field(default_factory=list)
    kind: str = "base"

    @property
    def update_gap(self) -> int:
        return max(self.latest_update - self.local_update, 0)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class MissingTitle:
    """A catalog title that is not in the local library."""

    title_id: str
    name: str
    icon: str = ""
    region: str = ""
    release_date: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "titleId": self.title_id,
            "name": self.name,
            "icon": self.icon,
            "region": self.region,
            "release_date": self.release_date,
        }


def _display_name(title_id: str, group: GameFileGroup, catalog: Catalog) -> str:
    title = catalog.get(title_id)
    if title is not None and title.attributes.name:
        return title.attributes.name
    if group.file is not None and group.file.content.name:
        return group.file.content.name
    return title_id


def missing_dlc(
    inventory: Inventory,
    catalog: Catalog,
    ignore_ids: set[str] | frozenset[str] = frozenset(),
) -> list[IncompleteTitle]:
    """Owned titles for which the catalog knows DLC that are not on disk."""
    result = []
    for title_id, group in inventory.titles.items():
        if not group.base_exist or title_id in ignore_ids:
            continue
        title = catalog.get(title_id)
        if title is None or not title.dlc:
            continue

        missing = []
        for dlc_id in sorted(title.dlc):
            if dlc_id in group.dlc or dlc_id in ignore_ids:
                continue
            dlc_name = title.dlc[dlc_id].attributes.name
            missing.append(f"{dlc_id} [{dlc_name}]" if dlc_name else dlc_id)

        if missing:
            result.append(
                IncompleteTitle(
                    title_id=title_id,
                    name=_display_name(title_id, group, catalog),
                    local_update=group.latest_update,
                    latest_update=title.latest_update,
                    missing_dlc=missing,
                )
            )
    return result


def missing_updates(
    inventory: Inventory,
    catalog: Catalog,
    ignore_ids: set[str] | frozenset[str] = frozenset(),
    ignore_dlc_updates: bool = False,
) -> list[IncompleteTitle]:
    """
    Owned titles whose newest local update is older than the catalog's.

    Unless ignore_dlc_updates is set, owned DLC with a newer catalog
    revision are reported as well (kind "dlc").
    """
    result = []
    for title_id, group in inventory.titles.items():
        if not group.base_exist or title_id in ignore_ids:
            continue
        title = catalog.get(title_id)
        if title is None:
            continue

        if title.latest_update > group.latest_update:
            result.append(
                IncompleteTitle(
                    title_id=title_id,
                    name=_display_name(title_id, group, catalog),
                    local_update=group.latest_update,
                    latest_update=title.latest_update,
                    latest_update_date=title.updates.get(title.latest_update, ""),
                )
            )

        if ignore_dlc_updates:
            continue
        for dlc_id, dlc_file in group.dlc.items():
            if dlc_id in ignore_ids:
                continue
            catalog_dlc = title.dlc.get(dlc_id)
            if catalog_dlc is None or catalog_dlc.latest_update <= dlc_file.version:
                continue
            result.append(
                IncompleteTitle(
                    title_id=dlc_id,
                    name=catalog_dlc.attributes.name or dlc_file.content.name or dlc_id,
                    local_update=dlc_file.version,
                    latest_update=catalog_dlc.latest_update,
                    latest_update_date=catalog_dlc.updates.get(catalog_dlc.latest_update, ""),
                    kind="dlc",
                )
            )
    return result


def missing_games(
    inventory: Inventory,
    catalog: Catalog,
    ignore_ids: set[str] | frozenset[str] = frozenset(),
    hide_demos: bool = False,
) -> list[MissingTitle]:
    """Catalog titles with no local group at all."""
    result = []
    for key, title in catalog.titles.items():
        attrs = title.attributes
        if key in inventory.titles or attrs.id in inventory.titles:
            continue
        if not attrs.name or not attrs.id:
            continue
        if attrs.id in ignore_ids:
            continue
        if hide_demos and attrs.is_demo:
            continue
        result.append(
            MissingTitle(
                title_id=attrs.id,
                name=attrs.name,
                icon=attrs.banner_url or attrs.icon_url,
                region=attrs.region,
                release_date=attrs.release_date,
            )
        )
    return result
