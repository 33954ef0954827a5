import json

from switch_library_sync.catalog import create_catalog
from switch_library_sync.inventory import Inventory, add_package
from switch_library_sync.reconcile import missing_dlc, missing_games, missing_updates
from switch_library_sync.titleid import normalize_id_set

from helpers import (
    GAME_A,
    GAME_A_DLC1,
    GAME_A_DLC2,
    GAME_A_UPDATE,
    GAME_B,
    GAME_C,
    content,
    package,
    sample_catalog,
    title,
    titles_doc,
)


def _inventory(*packages) -> Inventory:
    inventory = Inventory()
    for p in packages:
        add_package(inventory, p)
    return inventory


def test_missing_dlc_lists_catalog_dlc_not_on_disk():
    inventory = _inventory(
        package("/g", "A.nsp", content(GAME_A)),
        package("/g", "A dlc1.nsp", content(GAME_A_DLC1)),
    )
    result = missing_dlc(inventory, sample_catalog())

    assert len(result) == 1
    assert result[0].title_id == GAME_A
    assert result[0].name == "Game A"
    assert result[0].missing_dlc == [f"{GAME_A_DLC2} [Game A Pack 2]"]


def test_missing_dlc_skips_titles_without_base_and_ignored_titles():
    orphan_only = _inventory(package("/g", "A dlc1.nsp", content(GAME_A_DLC1)))
    assert missing_dlc(orphan_only, sample_catalog()) == []

    owned = _inventory(package("/g", "A.nsp", content(GAME_A)))
    assert missing_dlc(owned, sample_catalog(), normalize_id_set([GAME_A.upper()])) == []


def test_missing_dlc_ignore_list_can_name_single_dlc():
    owned = _inventory(package("/g", "A.nsp", content(GAME_A)))
    result = missing_dlc(owned, sample_catalog(), normalize_id_set([GAME_A_DLC1.upper()]))
    assert result[0].missing_dlc == [f"{GAME_A_DLC2} [Game A Pack 2]"]


def test_missing_updates_scenario():
    catalog = create_catalog(
        titles_doc(title(GAME_A, "Game A"), title(GAME_B, "Game B")),
        {GAME_A: {"5": "2021-01-01"}},
    )
    inventory = _inventory(
        package("/g", "A.nsp", content(GAME_A)),
        package("/g", "A upd.nsp", content(GAME_A_UPDATE, 3)),
    )

    updates = missing_updates(inventory, catalog)
    assert [(u.title_id, u.local_update, u.latest_update) for u in updates] == [(GAME_A, 3, 5)]
    assert updates[0].update_gap == 2
    assert updates[0].latest_update_date == "2021-01-01"

    games = missing_games(inventory, catalog)
    assert [g.title_id for g in games] == [GAME_B]


def test_missing_updates_reports_gap_only_above_latest_local():
    catalog = create_catalog(titles_doc(title(GAME_A, "Game A")), {GAME_A: {"7": ""}})
    inventory = _inventory(
        package("/g", "A.nsp", content(GAME_A)),
        *[package("/g", f"u{v}.nsp", content(GAME_A_UPDATE, v)) for v in [0, 3, 7, 2]],
    )
    assert missing_updates(inventory, catalog) == []

    newer = create_catalog(titles_doc(title(GAME_A, "Game A")), {GAME_A: {"8": ""}})
    assert missing_updates(inventory, newer)[0].local_update == 7


def test_missing_updates_without_local_update_counts_from_zero():
    inventory = _inventory(package("/g", "A.nsp", content(GAME_A)))
    result = missing_updates(inventory, sample_catalog())
    assert result[0].local_update == 0
    assert result[0].latest_update == 327680


def test_missing_updates_includes_dlc_unless_ignored():
    inventory = _inventory(
        package("/g", "A.nsp", content(GAME_A)),
        package("/g", "A upd.nsp", content(GAME_A_UPDATE, 327680)),
        package("/g", "A dlc.nsp", content(GAME_A_DLC1, 0)),
    )
    result = missing_updates(inventory, sample_catalog())
    assert [(r.title_id, r.kind) for r in result] == [(GAME_A_DLC1, "dlc")]
    assert result[0].name == "Game A Pack 1"

    assert missing_updates(inventory, sample_catalog(), ignore_dlc_updates=True) == []


def test_results_only_contain_titles_with_base():
    inventory = _inventory(
        package("/g", "A upd.nsp", content(GAME_A_UPDATE, 0)),
        package("/g", "A dlc.nsp", content(GAME_A_DLC1, 0)),
    )
    catalog = sample_catalog()
    assert missing_dlc(inventory, catalog) == []
    assert missing_updates(inventory, catalog) == []


def test_missing_games_filters():
    catalog = create_catalog(
        titles_doc(
            title(GAME_A, "Game A"),
            title(GAME_B, "Game B Demo", isDemo=True),
            title(GAME_C, ""),
            {"name": "No id"},
        ),
        {},
    )
    inventory = _inventory(package("/g", "A.nsp", content(GAME_A)))

    assert [g.title_id for g in missing_games(inventory, catalog)] == [GAME_B]
    assert missing_games(inventory, catalog, hide_demos=True) == []


def test_missing_games_never_returns_owned_or_orphaned_titles():
    inventory = _inventory(
        package("/g", "A dlc.nsp", content(GAME_A_DLC1)),
        package("/g", "B.nsp", content(GAME_B)),
    )
    result = missing_games(inventory, sample_catalog())
    assert result == []


def test_missing_games_ignore_set_is_case_insensitive():
    catalog = create_catalog(titles_doc(title(GAME_B, "Game B")), {})
    ignore = normalize_id_set([GAME_B.upper()])
    assert missing_games(Inventory(), catalog, ignore) == []


def test_missing_games_serialization():
    result = missing_games(Inventory(), sample_catalog())
    game_b = next(g for g in result if g.title_id == GAME_B)
    assert game_b.to_dict() == {
        "titleId": GAME_B,
        "name": "Game B",
        "icon": "b.png",
        "region": "EU",
        "release_date": "",
    }


def test_repeated_queries_serialize_identically():
    inventory = _inventory(package("/g", "A.nsp", content(GAME_A)))
    catalog = sample_catalog()

    def dump():
        return json.dumps(
            sorted((r.to_dict() for r in missing_dlc(inventory, catalog)), key=lambda d: d["title_id"])
        )

    assert len({dump() for _ in range(5)}) == 1
