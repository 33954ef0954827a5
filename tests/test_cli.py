import json

from click.testing import CliRunner

from switch_library_sync.cli import main
from switch_library_sync.settings import SettingsStore


def test_settings_set_and_show(tmp_path):
    runner = CliRunner()
    result = runner.invoke(main, ["--data-dir", str(tmp_path), "settings", "set", "folder", "/games"])
    assert result.exit_code == 0, result.output
    result = runner.invoke(
        main, ["--data-dir", str(tmp_path), "settings", "set", "organize_options.rename_files", "true"]
    )
    assert result.exit_code == 0, result.output

    settings = SettingsStore(tmp_path).load()
    assert settings.folder == "/games"
    assert settings.organize_options.rename_files is True

    shown = runner.invoke(main, ["--data-dir", str(tmp_path), "settings", "show"])
    assert json.loads(shown.output)["folder"] == "/games"


def test_settings_set_unknown_key_fails(tmp_path):
    result = CliRunner().invoke(main, ["--data-dir", str(tmp_path), "settings", "set", "nope", "1"])
    assert result.exit_code == 1
    assert "Unknown setting" in result.output


def test_scan_prints_summary(tmp_path):
    games = tmp_path / "games"
    games.mkdir()
    (games / "Game A [0100ABCD12340000][v0].nsp").write_bytes(b"a")
    (games / "junk.txt").write_text("x")
    data_dir = tmp_path / "data"
    runner = CliRunner()
    runner.invoke(main, ["--data-dir", str(data_dir), "settings", "set", "folder", str(games)])

    result = runner.invoke(main, ["--data-dir", str(data_dir), "scan", "--hard"])

    assert result.exit_code == 0, result.output
    assert "Files scanned: 2" in result.output
    assert "Titles: 1" in result.output
    assert "Issues: 1" in result.output
