"""Tests for AssetWriter, the writer for one asset directory."""

from pathlib import Path

import pytest

from layer_assets.writer import AssetWriter


def test_datadir_is_created_lazily(tmp_path: Path) -> None:
    """Creating a writer does not create its directory."""
    writer = AssetWriter(tmp_path / "design-assets")

    assert writer.datadir == str((tmp_path / "design-assets").resolve())
    assert not (tmp_path / "design-assets").exists()


def test_is_possible_output_accepts_assets_and_errors_file(tmp_path: Path) -> None:
    """Only image files and errors.txt may be written or deleted."""
    writer = AssetWriter(tmp_path)

    assert writer.is_possible_output("icon.PNG") is True
    assert writer.is_possible_output("a/b/c.webp") is True
    assert writer.is_possible_output("errors.txt") is True
    assert writer.is_possible_output("notes.txt") is False
    assert writer.is_possible_output("design.psd") is False


def test_write_text_creates_folders(tmp_path: Path) -> None:
    """Writing a nested file creates its folders."""
    writer = AssetWriter(tmp_path / "assets")

    writer.write_text("icons/logo.svg", "<svg/>")

    assert (tmp_path / "assets" / "icons" / "logo.svg").read_text() == "<svg/>"
    assert list(writer.updates) == [("create", str((tmp_path / "assets" / "icons" / "logo.svg").resolve()))]


def test_write_text_skips_unchanged_file(tmp_path: Path) -> None:
    """Writing the same contents twice touches the file once."""
    writer = AssetWriter(tmp_path)
    writer.write_text("logo.svg", "<svg/>")

    writer.write_text("logo.svg", "<svg/>")
    writer.write_text("logo.svg", "<svg></svg>")

    assert [action for action, _ in writer.updates] == ["create", "update"]


def test_write_text_rejects_non_asset(tmp_path: Path) -> None:
    """Files that could not be assets are refused."""
    writer = AssetWriter(tmp_path)

    with pytest.raises(ValueError, match="is_possible_output"):
        writer.write_text("notes.md", "hello")


def test_paths_must_stay_inside_datadir(tmp_path: Path) -> None:
    """Absolute and escaping paths are refused."""
    writer = AssetWriter(tmp_path / "assets")

    with pytest.raises(ValueError, match="must be relative"):
        writer.write_text(str(tmp_path / "x.png"), "")
    with pytest.raises(ValueError, match="Path escapes datadir"):
        writer.write_text("../x.png", "")


def test_dry_run_records_without_writing(tmp_path: Path) -> None:
    """In dry-run mode nothing is written but the update is recorded."""
    writer = AssetWriter(tmp_path, dry_run=True)

    writer.write_text("logo.svg", "<svg/>")

    assert not (tmp_path / "logo.svg").exists()
    assert writer.updates[0][0] == "create"


def test_append_text(tmp_path: Path) -> None:
    """Appending adds to the end of the file."""
    writer = AssetWriter(tmp_path)

    writer.append_text("errors.txt", "one\n")
    writer.append_text("errors.txt", "two\n")

    assert (tmp_path / "errors.txt").read_text() == "one\ntwo\n"


def test_temp_path_and_move_file(tmp_path: Path) -> None:
    """Scratch files live outside the asset directory until moved in."""
    writer = AssetWriter(tmp_path / "assets")

    scratch = writer.temp_path("icons/logo.png")
    scratch.write_bytes(b"png")
    writer.move_file(scratch, "icons/logo.png")

    assert scratch.suffix == ".png"
    assert not str(scratch).startswith(writer.datadir)
    assert not scratch.exists()
    assert (tmp_path / "assets" / "icons" / "logo.png").read_bytes() == b"png"


def test_discard_temp_and_close_remove_scratch_files(tmp_path: Path) -> None:
    """Unused scratch files and the scratch directory are cleaned up."""
    writer = AssetWriter(tmp_path / "assets")
    scratch = writer.temp_path("logo.png")

    writer.discard_temp(scratch)
    writer.discard_temp(scratch)

    assert not scratch.exists()
    assert scratch.parent.is_dir()
    writer.close()
    assert not scratch.parent.exists()
    assert writer.temp_path("logo.png").parent.is_dir()
    writer.close()


def test_recorded_updates_are_bounded(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Only the most recent changes are remembered."""
    monkeypatch.setattr("layer_assets.writer.MAX_RECORDED_UPDATES", 2)
    writer = AssetWriter(tmp_path)

    for name in ("a.png", "b.png", "c.png"):
        writer.write_text(name, "x")

    assert [Path(fname).name for _, fname in writer.updates] == ["b.png", "c.png"]


def test_delete_file(tmp_path: Path) -> None:
    """Deleting reports whether there was a file."""
    writer = AssetWriter(tmp_path)
    (tmp_path / "logo.png").write_bytes(b"png")

    assert writer.delete_file("logo.png") is True
    assert writer.delete_file("logo.png") is False
    assert not (tmp_path / "logo.png").exists()


def test_prune_empty_dirs_removes_deepest_first(tmp_path: Path) -> None:
    """Empty folders and their empty ancestors are removed; others stay."""
    (tmp_path / "a" / "b").mkdir(parents=True)
    (tmp_path / "c").mkdir()
    (tmp_path / "c" / "keep.png").write_bytes(b"png")
    writer = AssetWriter(tmp_path)

    removed = writer.prune_empty_dirs(["a/b", "c"])

    root = str(tmp_path.resolve())
    assert removed == [f"{root}/a/b", f"{root}/a"]
    assert (tmp_path / "c").is_dir()


def test_remove_if_empty(tmp_path: Path) -> None:
    """The asset directory is only removed when empty."""
    datadir = tmp_path / "assets"
    datadir.mkdir()
    (datadir / "logo.png").write_bytes(b"png")
    writer = AssetWriter(datadir)

    assert writer.remove_if_empty() is False
    (datadir / "logo.png").unlink()
    assert writer.remove_if_empty() is True
    assert not datadir.exists()
