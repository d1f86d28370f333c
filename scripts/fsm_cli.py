#!/usr/bin/env python3
"""
Inspect and exercise an FSM configuration set from the command line.

Usage:
    python3 scripts/fsm_cli.py validate [--config-dir DIR]
    python3 scripts/fsm_cli.py resolve TYPE_KEY SCOPE [--config-dir DIR]
    python3 scripts/fsm_cli.py simulate SNAPSHOT.json EVENT [--actor ID] [--user ID]

Examples:
    # Validate the bundled default set
    python3 scripts/fsm_cli.py validate

    # Print the merged FSM of a child template
    python3 scripts/fsm_cli.py resolve task.writer task

    # Dry-run "submit_for_review" against a document snapshot
    python3 scripts/fsm_cli.py simulate draft.json submit_for_review

The snapshot file holds one entity:
    {"entity_type": "document", "id": "doc-1", "type_key": "document.base",
     "state_key": "draft", "props": {"word_count": 120}}
"""

import argparse
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from onto_config import get_active_config  # noqa: E402
from onto_config.assembler import AssemblyError, assemble_from_directory  # noqa: E402
from onto_config.bridges import build_template_store  # noqa: E402
from onto_config.validator import validate_configuration  # noqa: E402
from onto_kernel.exceptions import OntoKernelError  # noqa: E402
from onto_kernel.services.template_resolver import TemplateResolver  # noqa: E402
from onto_services.wiring import build_engine  # noqa: E402

DEFAULT_CONFIG_DIR = ROOT / "onto_config" / "sets" / "default"


def cmd_validate(args: argparse.Namespace) -> int:
    try:
        pack = assemble_from_directory(Path(args.config_dir))
    except AssemblyError as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1

    print(f"config_id: {pack.config_id}")
    print(f"version:   {pack.version}")
    print(f"checksum:  {pack.checksum[:16]}...")
    print(f"templates: {len(pack.templates)}")

    result = validate_configuration(pack)
    for warning in result.warnings:
        print(f"  WARNING: {warning}")
    if not result.is_valid:
        print("VALIDATION FAILED:")
        for err in result.errors:
            print(f"  ERROR: {err}")
        return 1
    print("OK")
    return 0


def cmd_resolve(args: argparse.Namespace) -> int:
    try:
        pack = assemble_from_directory(Path(args.config_dir))
        resolver = TemplateResolver(
            build_template_store(pack),
            max_depth=pack.settings.max_inheritance_depth,
        )
        resolved = resolver.resolve(args.type_key, args.scope)
    except (AssemblyError, OntoKernelError, ValueError) as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(
        {
            "template_id": resolved.template_id,
            "type_key": resolved.type_key,
            "scope": resolved.scope,
            "inheritance_chain": list(resolved.inheritance_chain),
            "fsm": resolved.definition.to_dict(),
        },
        indent=2,
        default=str,
    ))
    return 0


def cmd_simulate(args: argparse.Namespace) -> int:
    try:
        entity = json.loads(Path(args.snapshot).read_text())
        pack = get_active_config(args.config_dir)
    except (OSError, ValueError, AssemblyError) as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1

    components = build_engine(pack)
    try:
        components.entity_store.add_entity(
            entity_type=entity["entity_type"],
            entity_id=entity["id"],
            type_key=entity["type_key"],
            state_key=entity["state_key"],
            props=entity.get("props") or {},
            project_id=entity.get("project_id"),
            name=entity.get("name"),
        )
    except KeyError as exc:
        print(f"  ERROR: snapshot is missing {exc}", file=sys.stderr)
        return 1

    result = components.engine.run_transition(
        {
            "entity_type": entity["entity_type"],
            "entity_id": entity["id"],
            "on": args.event,
            "dry_run": not args.execute,
        },
        actor_id=args.actor,
        user_id=args.user,
    )
    print(json.dumps(result.to_dict(), indent=2, default=str))
    return 0 if result.ok else 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Validate, resolve and simulate ontology FSM templates.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "examples:\n"
            "  python3 scripts/fsm_cli.py validate\n"
            "  python3 scripts/fsm_cli.py resolve document.research document\n"
            "  python3 scripts/fsm_cli.py simulate draft.json submit_for_review\n"
        ),
    )
    parser.add_argument(
        "--config-dir", type=str, default=str(DEFAULT_CONFIG_DIR),
        help=f"Configuration set directory (default: {DEFAULT_CONFIG_DIR})",
    )
    parser.add_argument(
        "--verbose", action="store_true",
        help="Show library log output",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("validate", help="Assemble and validate the configuration set")

    resolve = sub.add_parser("resolve", help="Print a template's merged FSM")
    resolve.add_argument("type_key")
    resolve.add_argument("scope")

    simulate = sub.add_parser("simulate", help="Run a transition against a JSON snapshot")
    simulate.add_argument("snapshot", help="Path to the entity JSON")
    simulate.add_argument("event")
    simulate.add_argument("--actor", type=str, default="cli")
    simulate.add_argument("--user", type=str, default=None)
    simulate.add_argument(
        "--execute", action="store_true",
        help="Commit in memory and run actions instead of a dry run",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    # Suppress library logging
    if not args.verbose:
        logging.disable(logging.CRITICAL)

    commands = {
        "validate": cmd_validate,
        "resolve": cmd_resolve,
        "simulate": cmd_simulate,
    }
    try:
        return commands[args.command](args)
    finally:
        logging.disable(logging.NOTSET)


if __name__ == "__main__":
    sys.exit(main())
