#!/usr/bin/env python3
"""
Code quality runner.

By default ruff, isort and black rewrite files in place. Flags:

    --check   report problems without modifying anything (used in CI)
    --tests   also run the unit test suite after formatting
"""

import subprocess
import sys
from pathlib import Path

ROOT = Path(__file__).parent

TARGETS = ["speech_relay", "cogs", "tests", "lint.py", "main.py"]

FIX_STEPS = [
    ("Ruff auto-fix", ["ruff", "check", "--fix"]),
    ("isort import sorting", ["isort"]),
    ("Black code formatting", ["black"]),
]

CHECK_STEPS = [
    ("Ruff linting", ["ruff", "check"]),
    ("isort import sorting check", ["isort", "--check-only"]),
    ("Black formatting check", ["black", "--check"]),
]

TEST_STEP = ("Unit tests", [sys.executable, "-m", "pytest", "-m", "unit", "-q"])


def run_step(description: str, command: list[str]) -> bool:
    """Run one tool and report whether it exited cleanly."""
    print(f"\n{'-' * 60}\n{description}: {' '.join(command)}\n{'-' * 60}")

    try:
        result = subprocess.run(command, cwd=ROOT)
    except FileNotFoundError:
        print(f"❌ {command[0]} is not installed (pip install -e '.[dev]')")
        return False

    return result.returncode == 0


def main(argv: list[str]) -> int:
    check_only = "--check" in argv

    base_steps = CHECK_STEPS if check_only else FIX_STEPS
    steps = [(name, command + TARGETS) for name, command in base_steps]
    if "--tests" in argv:
        steps.append(TEST_STEP)

    print("🔍 check-only mode" if check_only else "🔧 auto-fix mode")

    failed = [name for name, command in steps if not run_step(name, command)]

    print(f"\n{'=' * 60}")
    for name, _ in steps:
        print(f"{'❌' if name in failed else '✅'} {name}")

    if failed:
        hint = " (rerun without --check to auto-fix)" if check_only else ""
        print(f"\n{len(failed)} step(s) failed{hint}")
        return 1

    print("\nAll steps passed")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
