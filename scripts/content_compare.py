#!/usr/bin/env -S uv run --script
# /// script
# dependencies = ["beautifulsoup4", "lxml"]
# ///
"""
HTML Content Compare File Generator

Isolates one HTML element (head, title, body, h1, ...) in every HTML file of
two source trees and writes a text file per match into two mirrored target
trees, so the trees can be compared with an external diff tool.

Usage:
    uv run scripts/content_compare.py [--workspace DIR] [-e CODE] [--diff-tool CMD]
    uv run scripts/content_compare.py test

Defaults:
    source trees: <workspace>/SourceA, <workspace>/SourceB
    target trees: <workspace>/TargetA, <workspace>/TargetB
"""

from __future__ import annotations

import argparse
import fnmatch
import shlex
import shutil
import subprocess
import sys
import tempfile
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from html import escape
from pathlib import Path
from typing import Callable, Iterable

from bs4 import UnicodeDammit
from lxml import etree, html
from lxml.html import HtmlElement

DEFAULT_WORKSPACE = Path("ContentCompare")
FILE_PATTERN = "*.htm*"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# ANSI color codes for TTY output
IS_TTY = sys.stdout.isatty()
RED = "\033[91m" if IS_TTY else ""
GREEN = "\033[92m" if IS_TTY else ""
RESET = "\033[0m" if IS_TTY else ""


def log(msg: str = "") -> None:
    """Print a message and flush stdout immediately."""
    print(msg, flush=True)


def warn(msg: str) -> None:
    print(f"Warning: {msg}", file=sys.stderr, flush=True)


# =============================================================================
# Errors
# =============================================================================


class ContentCompareError(Exception):
    """Base class for errors that stop a content compare run or a single file."""


class DirectoryNotFoundError(ContentCompareError):
    """A source root does not exist or is not a directory."""


class DocumentParseError(ContentCompareError):
    """A document could not be read or parsed at all."""

    def __init__(self, path: Path, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class CleanupError(ContentCompareError):
    """A target tree could not be cleared before a run."""


class InvalidSelectionError(ContentCompareError):
    """A selector code outside the supported element menu."""


class ConfigError(ContentCompareError):
    """Source and target roots overlap in a way a reset would damage."""


# =============================================================================
# Element Selection
# =============================================================================


class Element(Enum):
    """HTML elements that can be isolated, with their menu code and tag."""

    HEAD = ("h", "head")
    TITLE = ("t", "title")
    META = ("m", "meta")
    LINK = ("l", "link")
    BODY = ("b", "body")
    FOOTER = ("f", "footer")
    IMAGE = ("i", "img")
    H1 = ("1", "h1")
    H2 = ("2", "h2")
    H3 = ("3", "h3")

    def __init__(self, code: str, tag: str):
        self.code = code
        self.tag = tag

    @property
    def xpath(self) -> str:
        return f"//{self.tag}"


ELEMENT_MENU = "\n".join(f'<{e.tag}> = "{e.code}"' for e in Element)


def parse_selection(code: str) -> Element:
    """Map a single-character menu code (case-insensitive) to its Element."""
    choice = code.strip().lower()
    for element in Element:
        if element.code == choice:
            return element
    codes = ", ".join(e.code for e in Element)
    raise InvalidSelectionError(f"invalid selection {code!r}, expected one of: {codes}")


def prompt_for_element(read: Callable[[str], str] | None = None) -> Element:
    """Show the element menu and ask until a valid code is entered.

    EOFError from ``read`` (default: input) propagates, so a closed stdin
    ends the prompt.
    """
    read = read or input
    log("\nChoose HTML element to isolate\n")
    log(ELEMENT_MENU)
    while True:
        try:
            return parse_selection(read("\nChoice: "))
        except InvalidSelectionError:
            log("Invalid selection, please retry...")


# =============================================================================
# File Enumeration
# =============================================================================


def find_html_files(root: Path, pattern: str = FILE_PATTERN) -> set[Path]:
    """
    Recursively collect every file under root whose name matches pattern.

    Matching ignores case, so "*.htm*" picks up INDEX.HTML as well as page.htm.

    Returns:
        Set of absolute file paths (empty if nothing matches)
    """
    if not root.is_dir():
        raise DirectoryNotFoundError(f"source directory not found: {root}")

    root = root.absolute()
    pattern = pattern.lower()
    return {
        path
        for path in root.rglob("*")
        if path.is_file() and fnmatch.fnmatchcase(path.name.lower(), pattern)
    }


# =============================================================================
# HTML Query
# =============================================================================


@dataclass(frozen=True)
class MatchedElement:
    """First element matching a query, serialized two ways."""

    tag: str
    outer_html: str  # tag, attributes and subtree
    inner_html: str  # subtree only

    @classmethod
    def from_node(cls, node: HtmlElement) -> MatchedElement:
        outer = html.tostring(node, encoding="unicode", with_tail=False)
        inner = escape(node.text, quote=False) if node.text else ""
        inner += "".join(
            html.tostring(child, encoding="unicode", with_tail=True) for child in node
        )
        return cls(tag=node.tag, outer_html=outer, inner_html=inner)


def _html_parser(encoding: str | None) -> html.HTMLParser:
    try:
        return html.HTMLParser(encoding=encoding, recover=True)
    except LookupError:
        # libxml2 does not know every codec name UnicodeDammit can report
        return html.HTMLParser(recover=True)


def parse_document(path: Path) -> HtmlElement | None:
    """
    Parse an HTML file into a tree, recovering from malformed markup.

    The encoding is sniffed with UnicodeDammit (BOM, meta charset, then
    heuristics) and handed to libxml2 so the raw bytes are decoded once.
    Returns None when the file holds no markup at all.
    """
    try:
        raw = path.read_bytes()
    except OSError as e:
        raise DocumentParseError(path, f"cannot read file: {e}") from e

    if not raw.strip():
        return None

    dammit = UnicodeDammit(raw, is_html=True)
    parser = _html_parser(dammit.original_encoding)
    try:
        return html.document_fromstring(raw, parser=parser)
    except etree.ParserError:
        # libxml2 recovered nothing, e.g. a file holding only a comment
        return None
    except (etree.LxmlError, ValueError) as e:
        raise DocumentParseError(path, f"cannot parse document: {e}") from e


def query_element(path: Path, element: Element) -> MatchedElement | None:
    """Return the first node in document order matching element, or None."""
    root = parse_document(path)
    if root is None:
        return None

    nodes = root.xpath(element.xpath)
    if not nodes:
        return None
    return MatchedElement.from_node(nodes[0])


# =============================================================================
# Artifact Writing
# =============================================================================


def render_artifact(match: MatchedElement, timestamp: datetime) -> str:
    return (
        f"Timestamp {timestamp.strftime(TIMESTAMP_FORMAT)}\n"
        f"\nTag:\n\n{match.outer_html}\n"
        f"\nContent:\n\n{match.inner_html}\n"
    )


def write_artifact(
    target_dir: Path,
    target_file: Path,
    match: MatchedElement | None,
    timestamp: datetime | None = None,
) -> bool:
    """
    Write the artifact for match to target_file, creating target_dir if needed.

    A missing match writes nothing. Any file already at target_file is
    overwritten. A write that fails partway removes the partial file before
    the error propagates.

    Returns:
        True if an artifact was written
    """
    if match is None:
        return False

    target_dir.mkdir(parents=True, exist_ok=True)
    try:
        with open(target_file, "w", encoding="utf-8") as f:
            f.write(render_artifact(match, timestamp or datetime.now()))
    except (OSError, UnicodeError):
        if target_file.is_file():
            target_file.unlink()
        raise
    return True


# =============================================================================
# Target Tree Reset
# =============================================================================


def reset_target_tree(root: Path) -> None:
    """Delete everything below root, leaving root itself present and empty."""
    if root.exists() and not root.is_dir():
        raise CleanupError(f"target {root} exists and is not a directory")

    try:
        root.mkdir(parents=True, exist_ok=True)
        for entry in root.iterdir():
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()
    except OSError as e:
        raise CleanupError(f"cannot clear target {root}: {e}") from e


# =============================================================================
# Batch Processing
# =============================================================================


@dataclass
class FileFailure:
    """A source file that could not be processed."""

    path: Path
    error: str


@dataclass
class BatchResult:
    """Outcome of processing one source tree."""

    source_root: Path
    target_root: Path
    written: list[Path] = field(default_factory=list)  # artifact paths
    no_match: list[Path] = field(default_factory=list)  # source paths
    failures: list[FileFailure] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.written) + len(self.no_match) + len(self.failures)

    @property
    def ok(self) -> bool:
        return not self.failures


def mirror_path(source_file: Path, source_root: Path, target_root: Path) -> Path:
    """
    Swap the source root prefix of source_file for target_root.

    Only the leading root segment is replaced. Subdirectories and the file
    name are kept as they are, even when they contain the root's own name.
    """
    return target_root / source_file.relative_to(source_root)


def process_file(
    source_file: Path,
    source_root: Path,
    target_root: Path,
    element: Element,
    timestamp: datetime | None = None,
) -> Path | None:
    """Query one source file and write its artifact. Returns the artifact path."""
    target_file = mirror_path(source_file, source_root, target_root)
    match = query_element(source_file, element)
    if write_artifact(target_file.parent, target_file, match, timestamp):
        return target_file
    return None


def _attempt(
    source_file: Path,
    source_root: Path,
    target_root: Path,
    element: Element,
    timestamp: datetime,
) -> Path | FileFailure | None:
    try:
        return process_file(source_file, source_root, target_root, element, timestamp)
    except (DocumentParseError, OSError, ValueError) as e:
        return FileFailure(path=source_file, error=str(e))


def process_batch(
    element: Element,
    source_files: Iterable[Path],
    source_root: Path,
    target_root: Path,
    jobs: int = 1,
    timestamp: datetime | None = None,
) -> BatchResult:
    """
    Write an artifact for every source file that contains element.

    Per-file read, parse and write errors are reported on stderr and recorded
    in the result; every file is attempted. With jobs > 1 the files are spread
    over a thread pool and the result is the same as a sequential run.
    """
    source_root = source_root.absolute()
    target_root = target_root.absolute()
    if timestamp is None:
        timestamp = datetime.now()

    sorted_files = sorted(Path(f).absolute() for f in source_files)
    outcomes: dict[Path, Path | FileFailure | None] = {}

    if jobs <= 1:
        for source_file in sorted_files:
            outcomes[source_file] = _attempt(
                source_file, source_root, target_root, element, timestamp
            )
    else:
        with ThreadPoolExecutor(max_workers=jobs) as executor:
            futures = {
                executor.submit(
                    _attempt, source_file, source_root, target_root, element, timestamp
                ): source_file
                for source_file in sorted_files
            }
            try:
                for future in as_completed(futures):
                    outcomes[futures[future]] = future.result()
            except KeyboardInterrupt:
                executor.shutdown(wait=False, cancel_futures=True)
                raise

    # Fold in sorted path order regardless of completion order
    result = BatchResult(source_root=source_root, target_root=target_root)
    for source_file in sorted_files:
        outcome = outcomes[source_file]
        if isinstance(outcome, FileFailure):
            warn(f"failed to process {outcome.path}: {outcome.error}")
            result.failures.append(outcome)
        elif outcome is None:
            result.no_match.append(source_file)
        else:
            result.written.append(outcome)

    return result


# =============================================================================
# Run Configuration
# =============================================================================


@dataclass
class CompareConfig:
    """Locations and options for one content compare run."""

    source_a: Path
    source_b: Path
    target_a: Path
    target_b: Path
    pattern: str = FILE_PATTERN
    jobs: int = 1
    diff_tool: str | None = None
    verbose: bool = False

    @classmethod
    def from_workspace(cls, workspace: Path, **options) -> CompareConfig:
        """Derive the four trees as SourceA/SourceB/TargetA/TargetB under workspace."""
        return cls(
            source_a=workspace / "SourceA",
            source_b=workspace / "SourceB",
            target_a=workspace / "TargetA",
            target_b=workspace / "TargetB",
            **options,
        )


def _overlaps(a: Path, b: Path) -> bool:
    return a == b or a in b.parents or b in a.parents


def validate_roots(config: CompareConfig) -> None:
    """
    Check the configured trees before anything is deleted.

    Both sources must exist. No target may overlap a source or the other
    target, since resetting it would destroy documents or artifacts.
    """
    for source in (config.source_a, config.source_b):
        if not source.is_dir():
            raise DirectoryNotFoundError(f"source directory not found: {source}")

    sources = [config.source_a.resolve(), config.source_b.resolve()]
    targets = [config.target_a.resolve(), config.target_b.resolve()]

    for target in targets:
        for source in sources:
            if _overlaps(target, source):
                raise ConfigError(f"target {target} overlaps source {source}")
    if _overlaps(targets[0], targets[1]):
        raise ConfigError(f"targets {targets[0]} and {targets[1]} overlap")


# =============================================================================
# Run Orchestration
# =============================================================================


def run_compare(config: CompareConfig, element: Element) -> tuple[BatchResult, BatchResult]:
    """
    Reset both target trees, then process source A and source B.

    All artifacts of a run share one timestamp, so the two trees differ only
    where the isolated element differs.
    """
    validate_roots(config)

    reset_target_tree(config.target_a)
    reset_target_tree(config.target_b)

    timestamp = datetime.now()
    results = []
    for source, target in ((config.source_a, config.target_a), (config.source_b, config.target_b)):
        step_start = time.perf_counter()
        files = find_html_files(source, config.pattern)
        result = process_batch(
            element, files, source, target, jobs=config.jobs, timestamp=timestamp
        )
        step_elapsed = (time.perf_counter() - step_start) * 1000

        log(f"\n{source} processed to {target}... ({step_elapsed:.1f}ms)")
        log(f"  Files:     {result.total}")
        log(f"  Written:   {len(result.written)}")
        log(f"  No match:  {len(result.no_match)}")
        log(f"  Failures:  {len(result.failures)}")
        if config.verbose:
            for artifact in result.written:
                log(f"  + {artifact.relative_to(result.target_root)}")
        results.append(result)

    return results[0], results[1]


def launch_diff_tool(command: str, target_a: Path, target_b: Path) -> None:
    """Run the external diff command with both target trees appended."""
    argv = shlex.split(command) + [str(target_a), str(target_b)]
    log(f"\nLaunching diff tool: {shlex.join(argv)}")
    try:
        subprocess.run(argv, check=False)
    except FileNotFoundError:
        print(f"Error: diff tool '{argv[0]}' not found", file=sys.stderr)


def print_summary(element: Element, results: Iterable[BatchResult], elapsed_ms: float) -> None:
    log("\n" + "=" * 60)
    log(f"CONTENT COMPARE SUMMARY (<{element.tag}>)")
    log("=" * 60)
    for result in results:
        log(f"{result.source_root} -> {result.target_root}")
        log(f"  Written: {len(result.written)}, no match: {len(result.no_match)}, "
            f"failures: {len(result.failures)}")
        for failure in result.failures:
            log(f"  {RED}!{RESET} {failure.path}: {failure.error}")
    log("-" * 40)
    log(f"Total time: {elapsed_ms:.1f}ms")
    log("=" * 60)


# =============================================================================
# Self Test
# =============================================================================


def run_tests() -> int:
    """Run quick checks of element extraction against inline documents."""
    passed = 0
    failed = 0

    def test(
        name: str,
        markup: str,
        element: Element,
        expected_outer: str | None,
        expected_inner: str | None = None,
    ) -> None:
        nonlocal passed, failed

        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "page.html"
            path.write_text(markup, encoding="utf-8")
            match = query_element(path, element)

        got_outer = match.outer_html if match else None
        got_inner = match.inner_html if match else None
        if got_outer == expected_outer and (expected_inner is None or got_inner == expected_inner):
            log(f"  {GREEN}PASS{RESET}: {name}")
            passed += 1
        else:
            log(f"  {RED}FAIL{RESET}: {name}")
            log(f"    Expected: {expected_outer!r} / {expected_inner!r}")
            log(f"    Got: {got_outer!r} / {got_inner!r}")
            failed += 1

    log("Running element extraction tests...\n")

    test(
        "single h1",
        "<html><body><h1>Hello</h1></body></html>",
        Element.H1,
        "<h1>Hello</h1>",
        "Hello",
    )
    test(
        "missing element",
        "<html><body><p>No heading</p></body></html>",
        Element.H2,
        None,
    )
    test(
        "first match wins",
        "<body><h2>One</h2><div><h2>Two</h2></div></body>",
        Element.H2,
        "<h2>One</h2>",
        "One",
    )
    test(
        "nested markup in content",
        '<body><h3 class="x">A <em>b</em> c</h3></body>',
        Element.H3,
        '<h3 class="x">A <em>b</em> c</h3>',
        "A <em>b</em> c",
    )
    test(
        "escaped text",
        "<html><head><title>Q &amp; A</title></head></html>",
        Element.TITLE,
        "<title>Q &amp; A</title>",
        "Q &amp; A",
    )
    test(
        "void element",
        '<body><img src="logo.png" alt="Logo"></body>',
        Element.IMAGE,
        '<img src="logo.png" alt="Logo">',
        "",
    )
    test(
        "empty document",
        "",
        Element.BODY,
        None,
    )

    log(f"\n{passed} passed, {failed} failed")
    return 1 if failed else 0


# =============================================================================
# Main
# =============================================================================


def _element_arg(value: str) -> Element:
    try:
        return parse_selection(value)
    except InvalidSelectionError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def config_from_args(args: argparse.Namespace) -> CompareConfig:
    config = CompareConfig.from_workspace(
        args.workspace,
        pattern=args.pattern,
        jobs=args.jobs,
        diff_tool=args.diff_tool,
        verbose=args.verbose,
    )
    overrides = {
        name: getattr(args, name)
        for name in ("source_a", "source_b", "target_a", "target_b")
        if getattr(args, name) is not None
    }
    return replace(config, **overrides)


def main(args: argparse.Namespace) -> int:
    """Isolate the chosen element in both source trees."""
    config = config_from_args(args)

    log("HTML Content Compare File Generator")
    log(datetime.now().strftime(TIMESTAMP_FORMAT))

    element = args.element
    if element is None:
        try:
            element = prompt_for_element()
        except EOFError:
            print("\nError: no element selected", file=sys.stderr)
            return 1

    total_start = time.perf_counter()
    try:
        result_a, result_b = run_compare(config, element)
    except ContentCompareError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        log("\n\nInterrupted! Target trees are incomplete, diff tool not launched.")
        return 130  # Standard exit code for SIGINT

    total_elapsed = (time.perf_counter() - total_start) * 1000
    print_summary(element, (result_a, result_b), total_elapsed)

    if config.diff_tool:
        launch_diff_tool(config.diff_tool, config.target_a, config.target_b)

    return 0 if result_a.ok and result_b.ok else 1


def main_cli(argv: list[str] | None = None) -> int:
    """Main CLI entry point with subcommand support."""
    argv = list(sys.argv[1:] if argv is None else argv)
    # Anything that is not a known command is treated as options for "extract"
    if not argv or argv[0] not in ("extract", "test", "-h", "--help"):
        argv.insert(0, "extract")

    parser = argparse.ArgumentParser(
        description="HTML Content Compare File Generator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    extract_parser = subparsers.add_parser(
        "extract",
        help="Isolate one element in both source trees (default)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Element codes:\n" + ELEMENT_MENU,
    )
    extract_parser.add_argument(
        "--workspace",
        type=Path,
        default=DEFAULT_WORKSPACE,
        help="Directory holding SourceA, SourceB, TargetA and TargetB (default: ./ContentCompare)",
    )
    for name in ("source-a", "source-b", "target-a", "target-b"):
        extract_parser.add_argument(
            f"--{name}",
            type=Path,
            default=None,
            help=f"Override the {name.replace('-', ' ').title()} directory",
        )
    extract_parser.add_argument(
        "-e",
        "--element",
        type=_element_arg,
        default=None,
        help="Element code to isolate (prompts when omitted)",
    )
    extract_parser.add_argument(
        "--pattern",
        default=FILE_PATTERN,
        help=f"File name pattern of HTML documents (default: {FILE_PATTERN})",
    )
    extract_parser.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=1,
        help="Number of parallel jobs per tree (default: 1)",
    )
    extract_parser.add_argument(
        "--diff-tool",
        default=None,
        help="Diff command to launch on TargetA and TargetB after a successful run",
    )
    extract_parser.add_argument(
        "-v", "--verbose", action="store_true", help="List every written artifact"
    )

    subparsers.add_parser("test", help="Run element extraction self-tests")

    args = parser.parse_args(argv)

    if args.command == "test":
        return run_tests()
    return main(args)


if __name__ == "__main__":
    sys.exit(main_cli())
