"""
Tests for the command line entry point (tonearm.__main__).

Commands run against a database file in a temporary directory; tags are faked
so no real audio files are needed.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from tonearm import __main__ as cli
from tonearm.core import library as library_module
from tonearm.core.providers import TagBundle


@pytest.fixture
def run(tmp_path: Path, capsys: pytest.CaptureFixture[str]):
    """Run the CLI with an isolated config and database; return (exit code, stdout)."""
    base = [
        "--config",
        str(tmp_path / "missing-config.toml"),
        "--db",
        str(tmp_path / "library.db"),
    ]

    def _run(*args: str) -> tuple[int, str]:
        code = cli.main([*base, *args])
        return code, capsys.readouterr().out

    return _run


@pytest.fixture
def music_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    directory = tmp_path / "music"
    directory.mkdir()
    for name in ("01 war pigs.mp3", "02 paranoid.mp3"):
        (directory / name).write_bytes(b"x")

    def read_tags(path: Path) -> TagBundle:
        number, _, title = path.stem.partition(" ")
        return TagBundle(
            path=str(path),
            title=title.title(),
            artist="Black Sabbath",
            album="Paranoid",
            year=1970,
            track=int(number),
            length=295.0,
            bitrate=320,
            mtime=path.stat().st_mtime,
        )

    monkeypatch.setattr(library_module, "read_tags", read_tags)
    return directory


class TestFormatting:
    def test_format_duration(self) -> None:
        assert cli.format_duration(0) == "0:00"
        assert cli.format_duration(295.9) == "4:55"
        assert cli.format_duration(3725) == "1:02:05"
        assert cli.format_duration(None) == "0:00"
        assert cli.format_duration(-5) == "0:00"

    def test_format_size(self) -> None:
        assert cli.format_size(512) == "512 B"
        assert cli.format_size(2048) == "2.0 KB"
        assert cli.format_size(5 * 1024**2) == "5.0 MB"
        assert cli.format_size(3 * 1024**3 // 2) == "1.5 GB"

    def test_split_modify_args(self) -> None:
        query, assignments = cli.split_modify_args(
            ["artist:sabbath", "year:1970..1979", "genre=Metal", "title:a=b", "year="]
        )
        assert query == ["artist:sabbath", "year:1970..1979", "title:a=b"]
        assert assignments == ["genre=Metal", "year="]


class TestCommands:
    def test_stats_on_empty_library(self, run) -> None:
        code, out = run("stats")
        assert code == 0
        assert "Tracks: 0" in out
        assert "Total time: 0:00" in out

    def test_import_ls_modify_rm(self, run, music_dir: Path) -> None:
        code, out = run("import", str(music_dir))
        assert code == 0
        assert "Imported 2 items" in out

        code, out = run("ls", "paranoid")
        assert code == 0
        assert sorted(out.splitlines()) == [
            "Black Sabbath - Paranoid - Paranoid [4:55]",
            "Black Sabbath - Paranoid - War Pigs [4:55]",
        ]

        code, out = run("ls", "--album")
        assert out.splitlines() == ["Black Sabbath - Paranoid (1970)"]

        code, out = run("modify", "title:war", "genre=Doom")
        assert code == 0
        assert "Modified 1 items" in out

        code, out = run("ls", "genre:doom")
        assert out.splitlines() == ["Black Sabbath - Paranoid - War Pigs [4:55]"]

        code, out = run("rm", "war pigs")
        assert code == 0
        assert "Removed 1 items" in out

        code, out = run("stats")
        assert "Tracks: 1" in out
        assert "Albums: 1" in out

    def test_import_defaults_to_library_directory(
        self, tmp_path: Path, music_dir: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        config = tmp_path / "config.toml"
        config.write_text(
            f'[library]\ndirectory = "{music_dir.as_posix()}"\n'
            f'database = "{(tmp_path / "lib.db").as_posix()}"\n',
            encoding="utf-8",
        )

        assert cli.main(["--config", str(config), "import"]) == 0
        assert "Imported 2 items" in capsys.readouterr().out

    def test_bad_query_exits_1(self, run) -> None:
        code, _ = run("ls", "rating:5")
        assert code == 1

    def test_modify_without_assignments(self, run) -> None:
        code, _ = run("modify", "title:war")
        assert code == 2

    def test_invalid_config_exits_1(self, tmp_path: Path) -> None:
        config = tmp_path / "config.toml"
        config.write_text("[server]\nport = -1\n", encoding="utf-8")

        assert cli.main(["--config", str(config), "stats"]) == 1
