"""CLI for the Engram memory store.

Provides commands:
- engram stats: Layer sizes and index statistics
- engram remember: Store a JSON payload
- engram recall: Recall memories similar to a JSON payload
- engram consolidate: Run one consolidation sweep
- engram evict: Bring a layer back under its capacity
- engram config: Write a default configuration file

Every command except config works on a directory store (--data, or
data_dir from the config file).
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Optional

from .configs import EngramConfig, load_config, save_config
from .errors import EngramError
from .memory import DirectoryPersistence, MemoryStore, MemoryType, ThoughtPattern

logger = logging.getLogger("engram")


def _open_store(args: argparse.Namespace) -> MemoryStore:
    config = load_config(args.config)
    data_dir = args.data or config.get_data_path()
    if data_dir is None:
        raise SystemExit("engram: no data directory (use --data or set data_dir in the config)")
    if args.progress:
        config.store.show_progress = True
    return MemoryStore.open(config, persistence=DirectoryPersistence(data_dir))


def _parse_payload(text: str):
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        # Bare words are taken as a text payload
        return text


def cmd_stats(args: argparse.Namespace) -> int:
    """Show store statistics."""
    store = _open_store(args)
    stats = store.stats()

    if args.json:
        print(json.dumps(stats, indent=2, default=str))
        return 0

    print(f"Memories: {stats['total_memories']} (D={stats['dim']})")
    for layer, (size, cap) in enumerate(zip(stats["layers"], stats["capacities"])):
        print(f"  layer {layer}: {size}/{cap}")
    if stats["by_type"]:
        print("By type:")
        for kind, count in sorted(stats["by_type"].items()):
            print(f"  {kind}: {count}")
    index = stats["index"]
    print(f"Index: top level {index['top_level']}, mean degree {index['mean_degree']:.1f}")
    return 0


def cmd_remember(args: argparse.Namespace) -> int:
    """Store a payload."""
    store = _open_store(args)
    memory = store.remember(
        _parse_payload(args.payload),
        memory_type=args.type,
        thought=args.thought,
        associations=args.tag or (),
        confidence=args.confidence,
    )
    print(memory.id)
    return 0


def cmd_recall(args: argparse.Namespace) -> int:
    """Recall memories similar to a payload."""
    store = _open_store(args)
    results = store.recall_input(
        _parse_payload(args.payload),
        memory_type=args.type,
        thought=args.thought,
        type_filter=args.filter_type,
        bias_filter=args.filter_thought,
        top_k=args.k,
    )

    if args.json:
        print(json.dumps(
            [{"similarity": r.similarity, **r.memory.to_dict()} for r in results],
            indent=2,
            default=str,
        ))
        return 0

    if not results:
        print("No memories recalled.")
        return 0
    for r in results:
        m = r.memory
        print(f"{r.similarity:+.3f}  {m.id}  [{m.memory_type.value}, layer {m.layer}, conf {m.confidence:.2f}]")
    return 0


def cmd_consolidate(args: argparse.Namespace) -> int:
    """Run one consolidation sweep."""
    store = _open_store(args)
    report = store.consolidate(layers=args.layer)

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(f"Merges: {report.merges}, skipped: {report.skipped}, evicted: {len(report.evicted)}")
        print(f"Layers now: {store.layer_sizes()}")
    return 0


def cmd_evict(args: argparse.Namespace) -> int:
    """Evict a layer down to capacity."""
    store = _open_store(args)
    evicted = store.evict(args.layer)
    print(f"Evicted {len(evicted)} memories from layer {args.layer}")
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    """Write a default configuration file."""
    config = EngramConfig()
    if args.data:
        config.data_dir = args.data
    save_config(config, args.output)
    print(f"Wrote {args.output}")
    return 0


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="engram",
        description="Layered hyperdimensional memory store",
    )
    parser.add_argument("--config", help="YAML configuration file")
    parser.add_argument("--data", help="Memory directory (overrides data_dir)")
    parser.add_argument("--progress", action="store_true", help="Show index rebuild progress")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    types = [t.value for t in MemoryType]
    thoughts = [p.value for p in ThoughtPattern]

    # Stats command
    stats_parser = subparsers.add_parser("stats", help="Show store statistics")
    stats_parser.add_argument("--json", action="store_true", help="Output as JSON")
    stats_parser.set_defaults(func=cmd_stats)

    # Remember command
    remember_parser = subparsers.add_parser("remember", help="Store a JSON payload")
    remember_parser.add_argument("payload", help="JSON payload (or plain text)")
    remember_parser.add_argument("--type", default="episodic", choices=types, help="Memory type")
    remember_parser.add_argument("--thought", choices=thoughts, help="Thought pattern for encoding")
    remember_parser.add_argument("--tag", action="append", help="Association tag (repeatable)")
    remember_parser.add_argument("--confidence", type=float, help="Confidence in [0, 1]")
    remember_parser.set_defaults(func=cmd_remember)

    # Recall command
    recall_parser = subparsers.add_parser("recall", help="Recall similar memories")
    recall_parser.add_argument("payload", help="JSON payload (or plain text)")
    recall_parser.add_argument("--type", default="episodic", choices=types,
                               help="Memory type used to encode the query")
    recall_parser.add_argument("--thought", choices=thoughts, help="Thought pattern for encoding")
    recall_parser.add_argument("--filter-type", action="append", choices=types,
                               help="Only recall these memory types")
    recall_parser.add_argument("--filter-thought", action="append", choices=thoughts,
                               help="Only recall memories encoded under these patterns")
    recall_parser.add_argument("-k", type=int, default=5, help="Number of results")
    recall_parser.add_argument("--json", action="store_true", help="Output as JSON")
    recall_parser.set_defaults(func=cmd_recall)

    # Consolidate command
    consolidate_parser = subparsers.add_parser("consolidate", help="Run a consolidation sweep")
    consolidate_parser.add_argument("--layer", type=int, action="append",
                                    help="Restrict the sweep to a layer (repeatable)")
    consolidate_parser.add_argument("--json", action="store_true", help="Output as JSON")
    consolidate_parser.set_defaults(func=cmd_consolidate)

    # Evict command
    evict_parser = subparsers.add_parser("evict", help="Evict a layer down to capacity")
    evict_parser.add_argument("layer", type=int, help="Layer index")
    evict_parser.set_defaults(func=cmd_evict)

    # Config command
    config_parser = subparsers.add_parser("config", help="Write a default config file")
    config_parser.add_argument("output", nargs="?", default="engram.yaml", help="Output path")
    config_parser.set_defaults(func=cmd_config)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if not args.command:
        parser.print_help()
        return 0

    try:
        return args.func(args)
    except (EngramError, ValueError) as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
