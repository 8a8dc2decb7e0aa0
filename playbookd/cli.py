"""playbookd CLI entrypoint."""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, NoReturn, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from playbookd import __version__
from playbookd.core.config import PlaybookdConfig, load_config, parse_duration
from playbookd.core.contrastive import ContrastiveQuery
from playbookd.core.errors import PlaybookError, ValidationError
from playbookd.core.format import format_for_context
from playbookd.core.manager import ManagerConfig, PlaybookManager, PruneOptions
from playbookd.core.schema import ExecutionRecord, Playbook, Reflection, Status
from playbookd.core.search import SearchMode, SearchQuery
from playbookd.core.storage.file_store import ListFilter
from playbookd.utils import setup_logging, slugify

ModelT = TypeVar("ModelT", bound=BaseModel)

# fields an edit may change; everything else is owned by the manager
EDITABLE_FIELDS = ("name", "description", "tags", "category", "steps", "lessons")


def read_json_input(path_or_stdin: str | None) -> dict[str, Any]:
    """Read JSON from file path or stdin."""
    try:
        if path_or_stdin and path_or_stdin != "-":
            with open(path_or_stdin) as f:
                return json.load(f)  # type: ignore
        else:
            return json.load(sys.stdin)  # type: ignore
    except json.JSONDecodeError as e:
        raise ValidationError(f"invalid JSON input: {e}") from e
    except OSError as e:
        raise ValidationError(f"cannot read input {path_or_stdin}: {e}") from e


def print_output(data: Any, as_json: bool) -> None:
    """Print output as JSON or human-readable format."""
    if as_json:
        json.dump(data, sys.stdout, indent=2, default=str)
        print()
    else:
        if isinstance(data, dict):
            for key, value in data.items():
                print(f"{key}: {value}")
        elif isinstance(data, list):
            for item in data:
                print(item)
        else:
            print(data)


def parse_model(model: type[ModelT], data: dict[str, Any]) -> ModelT:
    try:
        return model.model_validate(data)
    except SchemaError as e:
        raise ValidationError(f"invalid {model.__name__}: {e}") from e


def _dump(playbook: Playbook) -> dict[str, Any]:
    return playbook.model_dump(mode="json", exclude={"embedding"})


def _summary(playbook: Playbook) -> str:
    return (
        f"[{playbook.id}] {playbook.name} "
        f"({playbook.status.value}, v{playbook.version}, "
        f"confidence {playbook.confidence:.2f}, executions {playbook.total_executions})"
    )


def _load_config(args: argparse.Namespace) -> PlaybookdConfig:
    config = load_config(Path(args.config) if args.config else None)
    if args.data_dir:
        config.data.dir = args.data_dir
    return config


def _open_manager(args: argparse.Namespace, config: PlaybookdConfig | None = None) -> PlaybookManager:
    config = config or _load_config(args)
    setup_logging(config.logging.level, json_format=config.logging.format == "json")
    return PlaybookManager(ManagerConfig.from_config(config))


def cmd_create(args: argparse.Namespace) -> None:
    """Create a playbook from JSON."""
    playbook = parse_model(Playbook, read_json_input(args.file))
    with _open_manager(args) as manager:
        manager.create(playbook)
    if args.json:
        print_output(_dump(playbook), as_json=True)
    else:
        print(f"Created {_summary(playbook)}")


def cmd_get(args: argparse.Namespace) -> None:
    """Show a playbook."""
    with _open_manager(args) as manager:
        playbook = manager.get(args.playbook_id)

    if args.json:
        print_output(_dump(playbook), as_json=True)
        return

    print(_summary(playbook))
    if playbook.description:
        print(f"  {playbook.description}")
    if playbook.tags:
        print(f"  Tags: {', '.join(playbook.tags)}")
    print("  Steps:")
    for step in playbook.steps:
        print(f"    {step.order}. {step.action}")
    if playbook.lessons:
        print("  Lessons:")
        for lesson in playbook.lessons:
            print(f"    - {lesson.content}")


def cmd_list(args: argparse.Namespace) -> None:
    """List playbooks."""
    filter = ListFilter(
        status=Status(args.status) if args.status else None,
        category=args.category or "",
        tags=args.tag or [],
        limit=args.limit,
        include_archived=args.all,
    )
    with _open_manager(args) as manager:
        playbooks = manager.list(filter)

    if args.json:
        print_output([_dump(p) for p in playbooks], as_json=True)
    else:
        print(f"Found {len(playbooks)} playbooks:")
        for playbook in playbooks:
            print(f"  {_summary(playbook)}")


def merge_playbook(current: Playbook, edits: dict[str, Any]) -> Playbook:
    """Copy the editable fields present in ``edits`` onto the stored playbook.

    Counters, status, version and timestamps stay as stored. A rename
    regenerates the slug.
    """
    data = current.model_dump()
    data.update({key: edits[key] for key in EDITABLE_FIELDS if key in edits})
    merged = parse_model(Playbook, data)
    if merged.name != current.name:
        merged.slug = slugify(merged.name)
    return merged


def cmd_update(args: argparse.Namespace) -> None:
    """Apply edits from JSON to an existing playbook."""
    edits = read_json_input(args.file)
    if not isinstance(edits, dict):
        raise ValidationError("update input must be a JSON object")
    playbook_id = args.playbook_id or edits.get("id")
    if not playbook_id:
        raise ValidationError("playbook id is required for update")
    with _open_manager(args) as manager:
        playbook = merge_playbook(manager.get(playbook_id), edits)
        manager.update(playbook)
    if args.json:
        print_output(_dump(playbook), as_json=True)
    else:
        print(f"Updated {_summary(playbook)}")


def cmd_delete(args: argparse.Namespace) -> None:
    """Delete a playbook and its executions."""
    with _open_manager(args) as manager:
        manager.delete(args.playbook_id)
    print_output({"deleted": args.playbook_id}, as_json=args.json)


def _search_fields(args: argparse.Namespace, config: PlaybookdConfig) -> dict[str, Any]:
    """Query fields from the command line, falling back to the [search] config."""
    weight = args.confidence_weight
    return {
        "text": args.query,
        "mode": SearchMode(args.mode or config.search.mode),
        "category": args.category or "",
        "status": Status(args.status) if args.status else None,
        "min_score": args.min_score,
        "limit": args.limit or config.search.limit,
        "confidence_weight": config.search.confidence_weight if weight is None else weight,
    }


def cmd_search(args: argparse.Namespace) -> None:
    """Search playbooks."""
    config = _load_config(args)
    query = SearchQuery(**_search_fields(args, config))
    with _open_manager(args, config) as manager:
        results = manager.search(query)

    if args.json:
        print_output(
            [{"score": r.score, "playbook": _dump(r.playbook)} for r in results],
            as_json=True,
        )
    else:
        print(f"Found {len(results)} playbooks:")
        for r in results:
            print(f"  {r.score:.4f}  {_summary(r.playbook)}")


def cmd_context(args: argparse.Namespace) -> None:
    """Render proven and failed approaches for a task as Markdown."""
    config = _load_config(args)
    query = ContrastiveQuery(
        **_search_fields(args, config),
        positive_min_confidence=args.positive_min,
        negative_max_confidence=args.negative_max,
        include_neutral=args.neutral,
    )
    with _open_manager(args, config) as manager:
        results = manager.search_with_context(query)

    if args.json:
        print_output(
            {
                "query": results.query,
                "positive": [_dump(r.playbook) for r in results.positive],
                "negative": [_dump(r.playbook) for r in results.negative],
                "neutral": [_dump(r.playbook) for r in results.neutral],
            },
            as_json=True,
        )
    else:
        sys.stdout.write(format_for_context(results))


def cmd_record(args: argparse.Namespace) -> None:
    """Record an execution outcome from JSON."""
    record = parse_model(ExecutionRecord, read_json_input(args.file))
    with _open_manager(args) as manager:
        manager.record_execution(record)
        playbook = manager.get(record.playbook_id)

    result: dict[str, Any] = {
        "execution_id": record.id,
        "playbook_id": playbook.id,
        "outcome": record.outcome.value,
        "status": playbook.status.value,
        "confidence": round(playbook.confidence, 4),
    }
    print_output(result, as_json=args.json)


def cmd_executions(args: argparse.Namespace) -> None:
    """List execution records for a playbook, newest first."""
    with _open_manager(args) as manager:
        records = manager.list_executions(args.playbook_id, limit=args.limit)

    if args.json:
        print_output([r.model_dump(mode="json") for r in records], as_json=True)
    else:
        print(f"Found {len(records)} executions:")
        for r in records:
            print(f"  [{r.id}] {r.started_at.isoformat()} {r.outcome.value} (v{r.playbook_ver})")


def cmd_reflect(args: argparse.Namespace) -> None:
    """Apply a reflection's improvements to a playbook as lessons."""
    reflection = parse_model(Reflection, read_json_input(args.file))
    with _open_manager(args) as manager:
        playbook = manager.apply_reflection(args.playbook_id, reflection)

    result: dict[str, Any] = {
        "playbook_id": playbook.id,
        "version": playbook.version,
        "lessons": len(playbook.lessons),
    }
    print_output(result, as_json=args.json)


def cmd_prune(args: argparse.Namespace) -> None:
    """Archive stale, low-confidence or deprecated playbooks."""
    options = PruneOptions(
        max_age=parse_duration(args.max_age) if args.max_age else None,
        min_confidence=args.min_confidence,
        dry_run=args.dry_run,
    )
    with _open_manager(args) as manager:
        result = manager.prune(options)

    if args.json:
        print_output({"archived": result.archived, "dry_run": result.dry_run}, as_json=True)
    else:
        if result.dry_run:
            print("DRY RUN - would archive the following playbooks:")
        else:
            print(f"Archived {len(result.archived)} playbooks:")
        for playbook_id in result.archived:
            print(f"  {playbook_id}")


def cmd_reindex(args: argparse.Namespace) -> None:
    """Rebuild the search index from the store."""
    with _open_manager(args) as manager:
        count = manager.reindex()
    print_output({"indexed": count}, as_json=args.json)


def cmd_stats(args: argparse.Namespace) -> None:
    """Show collection statistics."""
    with _open_manager(args) as manager:
        result = manager.stats().to_dict()

    if args.json:
        print_output(result, as_json=True)
    else:
        print("Playbook Statistics:")
        print(f"  Total playbooks: {result['total']}")
        print(f"  Archived: {result['archived']}")
        print(f"  Total executions: {result['total_executions']}")
        print(f"  Average confidence: {result['avg_confidence']:.2%}")
        print("\nPlaybooks by status:")
        for status, count in sorted(result["by_status"].items()):
            print(f"  {status}: {count}")
        if result["by_category"]:
            print("\nPlaybooks by category:")
            for category, count in sorted(result["by_category"].items()):
                print(f"  {category}: {count}")


def _add_search_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("query", help="Task description to search for")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in SearchMode],
        help="Search mode (default: config)",
    )
    parser.add_argument("--limit", type=int, help="Number of results (default: config)")
    parser.add_argument("--category", help="Only playbooks in this category")
    parser.add_argument("--status", choices=[s.value for s in Status], help="Only this status")
    parser.add_argument(
        "--min-score", type=float, default=0.0, help="Minimum raw relevance (0 disables)"
    )
    parser.add_argument(
        "--confidence-weight",
        type=float,
        help="Blend Wilson confidence into ranking, 0.0-1.0 (default: config)",
    )
    parser.add_argument("--json", action="store_true", help="Output as JSON")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="playbookd", description="Manage agent playbooks")
    parser.add_argument("--version", action="version", version=f"playbookd {__version__}")
    parser.add_argument("--config", help="Path to TOML config (default: configs/default.toml)")
    parser.add_argument("--data-dir", help="Override the data directory")
    subparsers = parser.add_subparsers(dest="command", required=True)

    create_parser = subparsers.add_parser("create", help="Create a playbook from JSON")
    create_parser.add_argument("--file", help="Path to playbook JSON (or '-' for stdin)")
    create_parser.add_argument("--json", action="store_true", help="Output as JSON")
    create_parser.set_defaults(func=cmd_create)

    get_parser = subparsers.add_parser("get", help="Show a playbook")
    get_parser.add_argument("playbook_id", help="Playbook ID")
    get_parser.add_argument("--json", action="store_true", help="Output as JSON")
    get_parser.set_defaults(func=cmd_get)

    list_parser = subparsers.add_parser("list", help="List playbooks")
    list_parser.add_argument("--status", choices=[s.value for s in Status], help="Filter by status")
    list_parser.add_argument("--category", help="Filter by category")
    list_parser.add_argument(
        "--tag", action="append", help="Require this tag (repeatable, all must match)"
    )
    list_parser.add_argument("--limit", type=int, default=0, help="Maximum results (0 = all)")
    list_parser.add_argument("--all", action="store_true", help="Include archived playbooks")
    list_parser.add_argument("--json", action="store_true", help="Output as JSON")
    list_parser.set_defaults(func=cmd_list)

    update_parser = subparsers.add_parser("update", help="Update a playbook from JSON")
    update_parser.add_argument("playbook_id", nargs="?", help="Playbook ID (defaults to JSON id)")
    update_parser.add_argument("--file", help="Path to playbook JSON (or '-' for stdin)")
    update_parser.add_argument("--json", action="store_true", help="Output as JSON")
    update_parser.set_defaults(func=cmd_update)

    delete_parser = subparsers.add_parser("delete", help="Delete a playbook")
    delete_parser.add_argument("playbook_id", help="Playbook ID")
    delete_parser.add_argument("--json", action="store_true", help="Output as JSON")
    delete_parser.set_defaults(func=cmd_delete)

    search_parser = subparsers.add_parser("search", help="Search playbooks")
    _add_search_arguments(search_parser)
    search_parser.set_defaults(func=cmd_search)

    context_parser = subparsers.add_parser(
        "context", help="Proven and failed approaches for a task, as Markdown"
    )
    _add_search_arguments(context_parser)
    context_parser.add_argument(
        "--positive-min", type=float, default=0.5, help="Confidence floor for proven approaches"
    )
    context_parser.add_argument(
        "--negative-max", type=float, default=0.3, help="Confidence ceiling for failed approaches"
    )
    context_parser.add_argument("--neutral", action="store_true", help="Also collect neutral results")
    context_parser.set_defaults(func=cmd_context)

    record_parser = subparsers.add_parser("record", help="Record an execution from JSON")
    record_parser.add_argument("--file", help="Path to execution JSON (or '-' for stdin)")
    record_parser.add_argument("--json", action="store_true", help="Output as JSON")
    record_parser.set_defaults(func=cmd_record)

    executions_parser = subparsers.add_parser("executions", help="List executions of a playbook")
    executions_parser.add_argument("playbook_id", help="Playbook ID")
    executions_parser.add_argument("--limit", type=int, default=0, help="Maximum results (0 = all)")
    executions_parser.add_argument("--json", action="store_true", help="Output as JSON")
    executions_parser.set_defaults(func=cmd_executions)

    reflect_parser = subparsers.add_parser("reflect", help="Apply a reflection to a playbook")
    reflect_parser.add_argument("playbook_id", help="Playbook ID")
    reflect_parser.add_argument("--file", help="Path to reflection JSON (or '-' for stdin)")
    reflect_parser.add_argument("--json", action="store_true", help="Output as JSON")
    reflect_parser.set_defaults(func=cmd_reflect)

    prune_parser = subparsers.add_parser("prune", help="Archive stale or failing playbooks")
    prune_parser.add_argument("--max-age", help="Staleness cutoff, e.g. 90d (default: config)")
    prune_parser.add_argument(
        "--min-confidence", type=float, help="Confidence floor (default: config)"
    )
    prune_parser.add_argument("--dry-run", action="store_true", help="Preview without archiving")
    prune_parser.add_argument("--json", action="store_true", help="Output as JSON")
    prune_parser.set_defaults(func=cmd_prune)

    reindex_parser = subparsers.add_parser("reindex", help="Rebuild the search index")
    reindex_parser.add_argument("--json", action="store_true", help="Output as JSON")
    reindex_parser.set_defaults(func=cmd_reindex)

    stats_parser = subparsers.add_parser("stats", help="Show playbook statistics")
    stats_parser.add_argument("--json", action="store_true", help="Output as JSON")
    stats_parser.set_defaults(func=cmd_stats)

    return parser


def main(argv: list[str] | None = None) -> NoReturn:
    """Main CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        args.func(args)
    except PlaybookError as e:
        print(f"error: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(0)


if __name__ == "__main__":
    main()
