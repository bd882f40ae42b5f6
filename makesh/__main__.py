import argparse
import logging
import os
import sys
from typing import Dict, List, Optional

from makesh.makesh_config import OptimizerConfig, load_config, parse_timestamp
from makesh.makesh_datatypes import Context, UnresolvedVariable, parse_command
from makesh.makesh_registry import ShellOptimizer


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="makesh",
        description="Evaluate a $(shell ...) command through the native fast paths.",
    )
    p.add_argument("command", help="command text, with $(NAME) variable references")
    p.add_argument("bindings", nargs="*", metavar="NAME=VALUE", help="variable bindings")
    p.add_argument("--config", help="configuration file (.yaml, .json or .toml)")
    p.add_argument("--root", help="build tree to index for find queries")
    p.add_argument("--date", help="reference build timestamp for `date` commands (ISO-8601)")
    p.add_argument("--log-level", help="logging level (default WARNING)")
    p.add_argument("--explain", action="store_true", help="show the matched pattern instead of running")
    return p


def parse_bindings(items: List[str]) -> Dict[str, object]:
    out: Dict[str, object] = {}
    for item in items:
        name, sep, value = item.partition("=")
        if not sep or not name:
            raise ValueError(f"Expected NAME=VALUE, got {item!r}")
        out[name] = parse_command(value)
    return out


def make_config(args: argparse.Namespace) -> OptimizerConfig:
    config = load_config(args.config) if args.config else OptimizerConfig()
    date = args.date or os.environ.get("MAKESH_SHELL_DATE")
    return config.with_overrides(
        index_root=args.root,
        shell_date_timestamp=parse_timestamp(date) if date else None,
        log_level=args.log_level,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = make_config(args)
        bindings = parse_bindings(args.bindings)
        command = parse_command(args.command)
        logging.basicConfig(level=config.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    optimizer = ShellOptimizer(config)
    node = optimizer.compact(command)
    if args.explain:
        found = optimizer.find_entry(command)
        name = found[0].name if found else "<none>"
        print(f"{name} -> {type(node).__name__}")
        return 0

    ctx = Context(bindings, shell=config.shell)
    try:
        print(node.evaluate(ctx))
    except UnresolvedVariable as e:
        print(f"Error: unresolved variable {e.name}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
