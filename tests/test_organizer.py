import os

import pytest

from switch_library_sync.exceptions import OrganizeTemplateError
from switch_library_sync.inventory import Inventory, add_package
from switch_library_sync.organizer import (
    FileSystemDeleter,
    FileSystemMover,
    apply_template,
    delete_empty_folders,
    delete_old_updates,
    is_options_valid,
    organize_library,
    validate_options,
)
from switch_library_sync.settings import OrganizeOptions

from helpers import GAME_A, GAME_A_DLC1, GAME_A_UPDATE, GAME_B, content, package, sample_catalog


class RecordingMover:
    def __init__(self, fail_for=()):
        self.calls = []
        self.fail_for = set(fail_for)

    def move_title(self, group, plan, moved):
        if group.title_id in self.fail_for:
            raise PermissionError("read-only")
        self.calls.append((group.title_id, plan))
        for src, dest in plan:
            if src != dest:
                moved[src] = dest


class RecordingDeleter:
    def __init__(self, fail=False):
        self.deleted = []
        self.fail = fail

    def delete(self, path):
        if self.fail:
            raise OSError("busy")
        self.deleted.append(path)


def _inventory():
    inventory = Inventory()
    for p in [
        package("/in", "a.nsp", content(GAME_A, 0, "Game A")),
        package("/in", "a-u1.nsp", content(GAME_A_UPDATE, 65536)),
        package("/in", "a-u2.nsp", content(GAME_A_UPDATE, 131072)),
        package("/in", "a-dlc.nsp", content(GAME_A_DLC1, 0)),
        package("/in", "b.xci", content(GAME_B, 0, "Game B")),
        package("/in", "orphan.nsp", content("0100000000020800", 65536)),
    ]:
        add_package(inventory, p)
    return inventory


def test_validate_options_requires_placeholders():
    validate_options(OrganizeOptions())
    bad_folder = OrganizeOptions(create_folder_per_game=True, folder_name_template="Games")
    bad_file = OrganizeOptions(rename_files=True, file_name_template="")

    with pytest.raises(OrganizeTemplateError, match="folder name template"):
        validate_options(bad_folder)
    with pytest.raises(OrganizeTemplateError, match="file name template"):
        validate_options(bad_file)
    assert not is_options_valid(bad_file)


def test_invalid_template_moves_nothing():
    mover = RecordingMover()
    options = OrganizeOptions(create_folder_per_game=True, folder_name_template="static")
    with pytest.raises(OrganizeTemplateError):
        organize_library(_inventory(), sample_catalog(), options, "/out", mover=mover)
    assert mover.calls == []


def test_apply_template_cleans_names():
    values = {"TITLE_NAME": "Zelda: Breath/Wild", "DLC_NAME": "", "TITLE_ID": "X"}
    assert apply_template("{TITLE_NAME} ({DLC_NAME})[{TITLE_ID}]", values) == "Zelda BreathWild [X]"
    assert apply_template("{TITLE_NAME}", {"TITLE_NAME": "Pokémon"}, safe_names=True) == "Pokmon"


def test_organize_moves_each_title_with_base():
    mover = RecordingMover()
    options = OrganizeOptions(
        create_folder_per_game=True,
        rename_files=True,
        folder_name_template="{TITLE_NAME}",
        file_name_template="{TITLE_NAME} ({DLC_NAME})[{TITLE_ID}][v{VERSION}]",
    )
    events = []
    result = organize_library(
        _inventory(), sample_catalog(), options, "/out", mover=mover,
        on_progress=lambda c, t, m: events.append((c, t)),
    )

    assert [title_id for title_id, _ in mover.calls] == sorted([GAME_A, GAME_B])
    assert events == [(1, 2), (2, 2)]
    plan_a = dict(mover.calls[[t for t, _ in mover.calls].index(GAME_A)][1])
    folder = os.path.join("/out", "Game A")
    assert plan_a[os.path.join("/in", "a.nsp")] == os.path.join(folder, "Game A [0100ABCD12340000][v0].nsp")
    assert plan_a[os.path.join("/in", "a-u2.nsp")] == os.path.join(folder, "Game A [0100ABCD12340800][v131072].nsp")
    assert plan_a[os.path.join("/in", "a-dlc.nsp")] == os.path.join(
        folder, "Game A (Game A Pack 1)[0100ABCD12341001][v0].nsp"
    )
    assert result.titles_processed == 2
    assert result.files_moved == 5


def test_organize_collects_per_title_failures():
    mover = RecordingMover(fail_for=[GAME_A])
    result = organize_library(_inventory(), sample_catalog(), OrganizeOptions(), "/out", mover=mover)
    assert result.titles_processed == 1
    assert result.errors and result.errors[0].startswith(GAME_A)


def test_delete_old_updates_keeps_latest_and_follows_moves():
    inventory = _inventory()
    organized = organize_library(
        inventory, sample_catalog(),
        OrganizeOptions(create_folder_per_game=True), "/out", mover=RecordingMover(),
    )
    deleter = RecordingDeleter()
    delete_old_updates(inventory, organized, deleter=deleter)

    assert deleter.deleted == [os.path.join("/out", "Game A", "a-u1.nsp")]
    assert organized.deleted == deleter.deleted


def test_delete_failures_are_reported_without_undoing_moves():
    inventory = _inventory()
    organized = organize_library(inventory, sample_catalog(), OrganizeOptions(), "/out", mover=RecordingMover())
    delete_old_updates(inventory, organized, deleter=RecordingDeleter(fail=True))
    assert organized.titles_processed == 2
    assert len(organized.delete_errors) == 1


def test_file_system_mover_and_empty_folder_cleanup(tmp_path):
    src_dir = tmp_path / "in" / "old"
    src_dir.mkdir(parents=True)
    src = src_dir / "a.nsp"
    src.write_bytes(b"data")
    dest = tmp_path / "in" / "Game A" / "Game A.nsp"

    inventory = Inventory()
    add_package(inventory, package(str(src_dir), "a.nsp", content(GAME_A)))
    moved = {}
    FileSystemMover().move_title(inventory.titles[GAME_A], [(str(src), str(dest))], moved)

    assert dest.read_bytes() == b"data"
    assert moved == {str(src): str(dest)}
    assert delete_empty_folders([str(tmp_path / "in")]) == [str(src_dir)]
    assert (tmp_path / "in").is_dir()


def test_file_system_mover_refuses_to_overwrite(tmp_path):
    src = tmp_path / "a.nsp"
    dest = tmp_path / "b.nsp"
    src.write_bytes(b"1")
    dest.write_bytes(b"2")
    with pytest.raises(FileExistsError):
        FileSystemMover().move_title(None, [(str(src), str(dest))], {})


def test_partial_title_move_is_followed_by_old_update_delete(tmp_path):
    src_dir = tmp_path / "in"
    src_dir.mkdir()
    for name in ["a.nsp", "a-u1.nsp", "a-u2.nsp", "a-dlc.nsp"]:
        (src_dir / name).write_bytes(name.encode())
    out = tmp_path / "out"
    (out / "Game A").mkdir(parents=True)
    (out / "Game A" / "a-dlc.nsp").write_bytes(b"already here")

    inventory = Inventory()
    for p in [
        package(str(src_dir), "a.nsp", content(GAME_A, 0, "Game A")),
        package(str(src_dir), "a-u1.nsp", content(GAME_A_UPDATE, 65536)),
        package(str(src_dir), "a-u2.nsp", content(GAME_A_UPDATE, 131072)),
        package(str(src_dir), "a-dlc.nsp", content(GAME_A_DLC1, 0)),
    ]:
        add_package(inventory, p)

    result = organize_library(
        inventory, sample_catalog(), OrganizeOptions(create_folder_per_game=True), str(out)
    )
    assert result.titles_processed == 0
    assert len(result.errors) == 1 and "destination already exists" in result.errors[0]
    assert result.moved[str(src_dir / "a-u1.nsp")] == str(out / "Game A" / "a-u1.nsp")
    assert result.files_moved == 3

    delete_old_updates(inventory, result, deleter=FileSystemDeleter())

    assert result.delete_errors == []
    assert result.deleted == [str(out / "Game A" / "a-u1.nsp")]
    assert not (out / "Game A" / "a-u1.nsp").exists()
    assert (out / "Game A" / "a-u2.nsp").exists()
    assert (src_dir / "a-dlc.nsp").exists()
