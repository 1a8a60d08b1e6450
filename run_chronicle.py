#!/usr/bin/env python
"""
Run the Chronicle consistency checks from the command line.

Every command works either on a story state JSON file (``--state``) or on a
project in the SQLite store (``--project``). Checks exit with status 1 when
they find a problem, so they can gate scripts.
"""

# Standard library imports
import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

# Third party imports
from dotenv import load_dotenv
from pydantic import TypeAdapter, ValidationError

# Local imports
from chronicle_lib.codex import generate_codex_report
from chronicle_lib.compression import calculate_compression_stats
from chronicle_lib.core.config import (
    DATABASE_PATH,
    DEFAULT_LOG_LEVEL,
    MODEL_PROVIDER_OPTIONS,
    load_llm_config,
)
from chronicle_lib.core.exceptions import ChronicleException
from chronicle_lib.core.logger import get_logger, setup_logging
from chronicle_lib.llm import TextGenerator
from chronicle_lib.models import Chapter, GeneratedOutline, GeneratedOutlineList
from chronicle_lib.mortality import (
    build_death_confirmation_prompt,
    detect_deceased_in_content,
    format_violation_warning,
    get_active_characters,
    quick_analyze_deaths,
)
from chronicle_lib.outline_validator import format_validation_result, validate_generated_outlines
from chronicle_lib.persistence import StoryStore
from chronicle_lib.plot_threads import (
    check_plot_consistency,
    generate_plot_reminder,
    generate_plot_report,
)
from chronicle_lib.workflow import (
    StoryState,
    analyze_chapter,
    build_context,
    load_story_state,
    save_story_state,
    volume_boundary,
)

# Load environment variables from .env file
load_dotenv()

logger = get_logger(__name__)

_OUTLINES_ADAPTER = TypeAdapter(List[GeneratedOutline])
_CHAPTERS_ADAPTER = TypeAdapter(List[Chapter])


def load_state(args: argparse.Namespace) -> StoryState:
    """Load the story state named on the command line."""
    if args.state:
        try:
            return StoryState.model_validate_json(Path(args.state).read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            raise ChronicleException(f"Cannot read story state {args.state}: {e}") from e
    with StoryStore(args.db) as store:
        return load_story_state(store, args.project)


def persist_state(args: argparse.Namespace, state: StoryState) -> None:
    if args.state:
        Path(args.state).write_text(state.model_dump_json(indent=2), encoding="utf-8")
        logger.info(f"Story state written to {args.state}")
    else:
        with StoryStore(args.db) as store:
            save_story_state(store, state)


def read_text(path: str) -> str:
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ChronicleException(f"Cannot read {path}: {e}") from e


def read_outlines(path: str) -> List[GeneratedOutline]:
    """Outlines as a bare list or wrapped in ``{"chapters": [...]}``."""
    raw = read_text(path)
    try:
        data = json.loads(raw)
        if isinstance(data, dict):
            return GeneratedOutlineList.model_validate(data).chapters
        return _OUTLINES_ADAPTER.validate_python(data)
    except (ValueError, ValidationError) as e:
        raise ChronicleException(f"Invalid outline file {path}: {e}") from e


def read_chapters(path: Optional[str]) -> Optional[List[Chapter]]:
    if not path:
        return None
    try:
        return _CHAPTERS_ADAPTER.validate_json(read_text(path))
    except ValidationError as e:
        raise ChronicleException(f"Invalid chapter file {path}: {e}") from e


def volume_index(args: argparse.Namespace, state: StoryState) -> int:
    """Zero-based index of the 1-based ``--volume`` argument."""
    index = args.volume - 1
    if not 0 <= index < len(state.volumes):
        raise ChronicleException(
            f"Volume {args.volume} does not exist; the project has {len(state.volumes)} volume(s)"
        )
    return index


# ==================== Commands ====================


def cmd_validate_outlines(args: argparse.Namespace) -> int:
    state = load_state(args)
    index = volume_index(args, state)
    result = validate_generated_outlines(
        read_outlines(args.outlines),
        volume_boundary(state, index),
        existing_chapters=read_chapters(args.existing),
        previous_volume_chapters=read_chapters(args.previous),
    )
    print(format_validation_result(result))
    return 0 if result.is_valid else 1


def cmd_check_deaths(args: argparse.Namespace) -> int:
    state = load_state(args)
    content = read_text(args.chapter)

    report = detect_deceased_in_content(content, state.characters)
    if report.has_violation:
        print(format_violation_warning(report.violations))
    else:
        print("✅ 未检测到已故角色出场")

    deaths = quick_analyze_deaths(content, [c.name for c in get_active_characters(state.characters)])
    if deaths.potential_deaths:
        print()
        print(build_death_confirmation_prompt(deaths.potential_deaths, args.title or args.chapter))
        print(f"（置信度：{deaths.confidence}）")

    return 1 if report.has_violation else 0


def cmd_plot_report(args: argparse.Namespace) -> int:
    state = load_state(args)
    print(generate_plot_report(state.plot_threads))
    if args.chapter is None:
        return 0

    reminder = generate_plot_reminder(args.chapter, state.plot_threads)
    if reminder:
        print()
        print(reminder)

    warnings = check_plot_consistency(args.chapter, state.plot_threads)
    for warning in warnings:
        print(f"⚠️ {warning.description}：{warning.suggestion}")
    return 1 if warnings else 0


def cmd_compress_context(args: argparse.Namespace) -> int:
    state = load_state(args)
    context = build_context(state, volume_index(args, state))
    stats = calculate_compression_stats(state.project.world_setting, len(state.characters), context)
    print(context.model_dump_json(indent=2))
    print(
        f"\n预计节省 {stats.saved_tokens} tokens（{stats.saved_percentage}%）："
        f"{stats.original_tokens} → {stats.compressed_tokens}"
    )
    return 0


def cmd_codex_report(args: argparse.Namespace) -> int:
    state = load_state(args)
    print(generate_codex_report(state.codex))
    return 0


def cmd_analyze_chapter(args: argparse.Namespace) -> int:
    state = load_state(args)
    content = read_text(args.text)
    config = load_llm_config(args.model_provider, args.model)

    analysis = analyze_chapter(
        TextGenerator(config), state, args.chapter_index, content, chapter_title=args.title or ""
    )

    extraction = analysis.extraction
    print(
        f"新实体 {len(extraction.new_entities)} 个，实体更新 {len(extraction.updated_entities)} 个，"
        f"新关系 {len(extraction.new_relations)} 条"
    )
    print(f"新伏笔 {len(analysis.plot_detection.new_threads)} 个")

    for conflict in analysis.codex_conflicts:
        print(f"⚠️ {conflict.issue}（{conflict.suggestion}）")
    if analysis.mortality.has_violation:
        print(format_violation_warning(analysis.mortality.violations))
    for warning in analysis.plot_warnings:
        print(f"⚠️ {warning.description}：{warning.suggestion}")

    if args.save:
        persist_state(args, analysis.state)
    return 1 if analysis.has_issues else 0


# ==================== Argument parsing ====================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Consistency checks for long-form novel projects"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=DEFAULT_LOG_LEVEL,
        help=f"Logging level (default: {DEFAULT_LOG_LEVEL})",
    )
    parser.add_argument("--log-file", type=str, help="Also write the log to this file")

    source = argparse.ArgumentParser(add_help=False)
    group = source.add_mutually_exclusive_group(required=True)
    group.add_argument("--state", type=str, help="Story state JSON file")
    group.add_argument("--project", type=str, help="Project id in the record store")
    source.add_argument(
        "--db",
        type=str,
        default=DATABASE_PATH,
        help=f"SQLite database of the record store (default: {DATABASE_PATH})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    p = subparsers.add_parser(
        "validate-outlines", parents=[source], help="Check generated outlines against a volume boundary"
    )
    p.add_argument("--volume", type=int, required=True, help="Volume number, starting at 1")
    p.add_argument("--outlines", type=str, required=True, help="JSON file of generated outlines")
    p.add_argument("--existing", type=str, help="JSON file of chapters already in the volume")
    p.add_argument("--previous", type=str, help="JSON file of the previous volume's chapters")
    p.set_defaults(func=cmd_validate_outlines)

    p = subparsers.add_parser(
        "check-deaths", parents=[source], help="Find deceased characters in a chapter text"
    )
    p.add_argument("--chapter", type=str, required=True, help="Chapter text file")
    p.add_argument("--title", type=str, help="Chapter title used in messages")
    p.set_defaults(func=cmd_check_deaths)

    p = subparsers.add_parser("plot-report", parents=[source], help="Show the plot thread report")
    p.add_argument("--chapter", type=int, help="Also show reminders and warnings for this chapter")
    p.set_defaults(func=cmd_plot_report)

    p = subparsers.add_parser(
        "compress-context", parents=[source], help="Show the compressed context of a volume"
    )
    p.add_argument("--volume", type=int, required=True, help="Volume number, starting at 1")
    p.set_defaults(func=cmd_compress_context)

    p = subparsers.add_parser("codex-report", parents=[source], help="Show the codex report")
    p.set_defaults(func=cmd_codex_report)

    p = subparsers.add_parser(
        "analyze-chapter", parents=[source], help="Run the LLM analysis of a finished chapter"
    )
    p.add_argument("--chapter-index", type=int, required=True, help="Chapter index in the book")
    p.add_argument("--text", type=str, required=True, help="Chapter text file")
    p.add_argument("--title", type=str, help="Chapter title")
    p.add_argument(
        "--model-provider",
        type=str,
        choices=MODEL_PROVIDER_OPTIONS,
        help="LLM provider to use (default: from the environment)",
    )
    p.add_argument("--model", type=str, help="Specific model to use")
    p.add_argument("--save", action="store_true", help="Save the updated story state")
    p.set_defaults(func=cmd_analyze_chapter)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(level=args.log_level, log_file=args.log_file)

    try:
        return args.func(args)
    except ChronicleException as e:
        logger.error(str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
