#!/usr/bin/env python
"""Fail CI when the migration tree has diverged into several heads."""

import argparse
import sys
from pathlib import Path

from alembic.config import Config
from alembic.script import ScriptDirectory


def find_up(name: str, start: Path) -> Path | None:
    p = start.resolve()
    while True:
        cand = p / name
        if cand.exists():
            return cand
        if p.parent == p:
            return None
        p = p.parent


def check(ini: Path) -> int:
    script = ScriptDirectory.from_config(Config(str(ini)))
    heads = script.get_heads()
    revisions = list(script.walk_revisions())
    if len(heads) != 1:
        print(f"Error: expected 1 Alembic head, found {len(heads)}: {heads}")
        return 1
    print(f"Alembic head OK: {heads[0]} ({len(revisions)} revision(s))")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--config", type=Path, help="path to alembic.ini (default: search upwards)")
    args = parser.parse_args(argv)

    ini = args.config or find_up("alembic.ini", Path(__file__).resolve().parent)
    if ini is None or not ini.exists():
        print("Error: could not find alembic.ini")
        return 1
    return check(ini)


if __name__ == "__main__":
    sys.exit(main())
