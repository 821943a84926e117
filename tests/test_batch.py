from datetime import datetime
from pathlib import Path

import pytest

from content_compare import (
    BatchResult,
    Element,
    FileFailure,
    find_html_files,
    mirror_path,
    process_batch,
    process_file,
    reset_target_tree,
)

STAMP = datetime(2024, 3, 5, 14, 7, 9)
H1_DOC = "<html><body><h1>{}</h1></body></html>"


# -----------------------------------------------------------------------------
# mirror_path
# -----------------------------------------------------------------------------


def test_mirror_path_replaces_root_only():
    source = Path("/work/SourceA/guides/SourceA/index.html")
    assert mirror_path(source, Path("/work/SourceA"), Path("/work/TargetA")) == Path(
        "/work/TargetA/guides/SourceA/index.html"
    )


def test_mirror_path_keeps_structure(tmp_path: Path, write_html):
    source_root = tmp_path / "SourceA"
    target_root = tmp_path / "out" / "TargetA"
    for rel in ("index.html", "a/index.html", "a/b/c/page.htm"):
        write_html(source_root, rel, "<p></p>")

    for source_file in find_html_files(source_root):
        rel = source_file.relative_to(source_root.absolute())
        assert mirror_path(source_file, source_root.absolute(), target_root) == target_root / rel


def test_mirror_path_outside_root():
    with pytest.raises(ValueError):
        mirror_path(Path("/elsewhere/x.html"), Path("/work/SourceA"), Path("/work/TargetA"))


# -----------------------------------------------------------------------------
# process_file / process_batch
# -----------------------------------------------------------------------------


def test_process_file_writes_mirrored_artifact(tmp_path: Path, write_html):
    source_root = tmp_path / "SourceA"
    target_root = tmp_path / "TargetA"
    source = write_html(source_root, "x/y/index.html", H1_DOC.format("Hello"))

    artifact = process_file(source, source_root, target_root, Element.H1, STAMP)

    assert artifact == target_root / "x/y/index.html"
    text = artifact.read_text(encoding="utf-8")
    assert text.startswith("Timestamp 2024-03-05 14:07:09\n")
    assert "\nTag:\n\n<h1>Hello</h1>\n" in text
    assert "\nContent:\n\nHello\n" in text


def test_no_match_creates_no_artifact(tmp_path: Path, write_html):
    source_root = tmp_path / "SourceA"
    target_root = tmp_path / "TargetA"
    write_html(source_root, "has/index.html", H1_DOC.format("Yes"))
    write_html(source_root, "lacks/index.html", "<html><body><p>No</p></body></html>")

    result = process_batch(Element.H1, find_html_files(source_root), source_root, target_root)

    assert result.written == [(target_root / "has/index.html").absolute()]
    assert result.no_match == [(source_root / "lacks/index.html").absolute()]
    assert not (target_root / "lacks").exists()
    assert result.ok


def test_same_file_name_in_different_directories(tmp_path: Path, write_html):
    source_root = tmp_path / "SourceA"
    target_root = tmp_path / "TargetA"
    write_html(source_root, "one/index.html", H1_DOC.format("One"))
    write_html(source_root, "two/index.html", H1_DOC.format("Two"))

    process_batch(Element.H1, find_html_files(source_root), source_root, target_root, timestamp=STAMP)

    assert "<h1>One</h1>" in (target_root / "one/index.html").read_text(encoding="utf-8")
    assert "<h1>Two</h1>" in (target_root / "two/index.html").read_text(encoding="utf-8")


def test_unreadable_file_does_not_stop_batch(tmp_path: Path, write_html, capsys):
    source_root = tmp_path / "SourceA"
    target_root = tmp_path / "TargetA"
    first = write_html(source_root, "1.html", H1_DOC.format("First"))
    second = source_root / "2.html"  # listed but gone by the time it is read
    third = write_html(source_root, "3.html", H1_DOC.format("Third"))

    result = process_batch(Element.H1, [first, second, third], source_root, target_root)

    assert [p.name for p in result.written] == ["1.html", "3.html"]
    assert len(result.failures) == 1
    assert result.failures[0].path == second.absolute()
    assert not result.ok
    assert result.total == 3
    assert "2.html" in capsys.readouterr().err


def test_write_failure_is_per_file(tmp_path: Path, write_html):
    source_root = tmp_path / "SourceA"
    target_root = tmp_path / "TargetA"
    write_html(source_root, "a.html", H1_DOC.format("A"))
    write_html(source_root, "b.html", H1_DOC.format("B"))
    (target_root / "a.html").mkdir(parents=True)  # blocks the artifact for a.html

    result = process_batch(Element.H1, find_html_files(source_root), source_root, target_root)

    assert [f.path.name for f in result.failures] == ["a.html"]
    assert [p.name for p in result.written] == ["b.html"]


def test_file_outside_root_is_a_failure(tmp_path: Path, write_html):
    stray = write_html(tmp_path / "elsewhere", "x.html", H1_DOC.format("X"))

    result = process_batch(Element.H1, [stray], tmp_path / "SourceA", tmp_path / "TargetA")

    assert isinstance(result.failures[0], FileFailure)
    assert result.written == []


def test_empty_source_tree(tmp_path: Path):
    source_root = tmp_path / "SourceA"
    target_root = tmp_path / "TargetA"
    source_root.mkdir()
    reset_target_tree(target_root)

    result = process_batch(Element.BODY, find_html_files(source_root), source_root, target_root)

    assert result == BatchResult(source_root=source_root.absolute(), target_root=target_root.absolute())
    assert result.total == 0
    assert target_root.is_dir()
    assert list(target_root.iterdir()) == []


def test_parallel_matches_sequential(tmp_path: Path, write_html):
    source_root = tmp_path / "SourceA"
    for i in range(12):
        body = H1_DOC.format(f"Page {i}") if i % 3 else "<p>none</p>"
        write_html(source_root, f"d{i % 4}/p{i}.html", body)
    write_html(source_root, "d0/broken.html", "")
    files = find_html_files(source_root)

    sequential = process_batch(Element.H1, files, source_root, tmp_path / "seq", jobs=1, timestamp=STAMP)
    parallel = process_batch(Element.H1, files, source_root, tmp_path / "par", jobs=4, timestamp=STAMP)

    rel = lambda result: [p.relative_to(result.target_root) for p in result.written]  # noqa: E731
    assert rel(sequential) == rel(parallel)
    assert sequential.no_match == parallel.no_match
    for artifact in sequential.written:
        twin = parallel.target_root / artifact.relative_to(sequential.target_root)
        assert artifact.read_text(encoding="utf-8") == twin.read_text(encoding="utf-8")


def test_batch_shares_timestamp(tmp_path: Path, write_html):
    source_root = tmp_path / "SourceA"
    write_html(source_root, "a.html", H1_DOC.format("A"))
    write_html(source_root, "b.html", H1_DOC.format("B"))

    result = process_batch(Element.H1, find_html_files(source_root), source_root, tmp_path / "TargetA")

    first_lines = {p.read_text(encoding="utf-8").splitlines()[0] for p in result.written}
    assert len(first_lines) == 1


def test_symlink_to_file_outside_root_is_mirrored_at_link_path(tmp_path: Path, write_html):
    source_root = tmp_path / "SourceA"
    target_root = tmp_path / "TargetA"
    shared = write_html(tmp_path / "shared", "common.html", H1_DOC.format("Shared"))
    source_root.mkdir()
    (source_root / "linked.html").symlink_to(shared)

    result = process_batch(Element.H1, find_html_files(source_root), source_root, target_root)

    assert result.failures == []
    assert result.written == [(target_root / "linked.html").absolute()]
    assert "<h1>Shared</h1>" in (target_root / "linked.html").read_text(encoding="utf-8")


def test_symlink_inside_root_gets_its_own_artifact(tmp_path: Path, write_html):
    source_root = tmp_path / "SourceA"
    target_root = tmp_path / "TargetA"
    real = write_html(source_root, "real/page.html", H1_DOC.format("Page"))
    (source_root / "alias").mkdir()
    (source_root / "alias" / "page.html").symlink_to(real)

    result = process_batch(Element.H1, find_html_files(source_root), source_root, target_root)

    assert sorted(p.relative_to(target_root.absolute()) for p in result.written) == [
        Path("alias/page.html"),
        Path("real/page.html"),
    ]
    assert (target_root / "alias" / "page.html").read_text(encoding="utf-8") == (
        target_root / "real" / "page.html"
    ).read_text(encoding="utf-8")
