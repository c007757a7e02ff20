#!/usr/bin/env python3
"""Layering validation script.

Enforces the architectural rule that the polling core stays independent of
its outer layers. core/ and types/ must not import the application layer,
the sinks, the aiohttp web stack, or prometheus_client; utils/ must not
import any other rpc_monitor layer.

Exit codes:
    0: No violations found (clean)
    1: Violations detected (architectural rule broken)
"""

from __future__ import annotations

import re
import sys
from pathlib import Path
from typing import Final

# ANSI color codes for terminal output
RED: Final[str] = "\033[91m"
GREEN: Final[str] = "\033[92m"
YELLOW: Final[str] = "\033[93m"
RESET: Final[str] = "\033[0m"

_OUTER_LAYERS: Final[str] = r"rpc_monitor\.(?:app|sinks)\b"

# Directory name -> forbidden import targets
FORBIDDEN_IMPORTS: Final[dict[str, re.Pattern[str]]] = {
    "core": re.compile(rf"^\s*(?:from|import)\s+(?:{_OUTER_LAYERS}|aiohttp\b|prometheus_client\b)"),
    "types": re.compile(rf"^\s*(?:from|import)\s+(?:{_OUTER_LAYERS}|aiohttp\b|prometheus_client\b)"),
    "utils": re.compile(r"^\s*(?:from|import)\s+rpc_monitor\.(?:app|sinks|core)\b"),
}


def check_file(file_path: Path, pattern: re.Pattern[str]) -> list[tuple[int, str]]:
    """Check a single Python file for forbidden imports.

    Returns:
        List of (line_number, violation_description) tuples
    """
    violations: list[tuple[int, str]] = []

    try:
        lines = file_path.read_text(encoding="utf-8").splitlines()
    except OSError as e:
        print(f"{YELLOW}Warning: Could not read {file_path}: {e}{RESET}", file=sys.stderr)
        return violations

    for line_num, line in enumerate(lines, start=1):
        if pattern.search(line):
            violations.append((line_num, f"Forbidden import: {line.strip()}"))

    return violations


def scan_directory(base_path: Path, layer: str, pattern: re.Pattern[str]) -> dict[Path, list[tuple[int, str]]]:
    dir_path = base_path / layer
    if not dir_path.exists():
        print(f"{YELLOW}Warning: Layer directory {dir_path} does not exist{RESET}", file=sys.stderr)
        return {}

    violations_by_file: dict[Path, list[tuple[int, str]]] = {}
    for py_file in dir_path.rglob("*.py"):
        if "__pycache__" in py_file.parts:
            continue
        file_violations = check_file(py_file, pattern)
        if file_violations:
            violations_by_file[py_file] = file_violations

    return violations_by_file


def main() -> int:
    """Main entry point for the layering check.

    Returns:
        Exit code: 0 if no violations, 1 if violations found.
    """
    project_root = Path(__file__).parent.parent
    src_path = project_root / "src" / "rpc_monitor"

    if not src_path.exists():
        print(f"{RED}Error: Could not find src/rpc_monitor directory{RESET}", file=sys.stderr)
        return 1

    print("Checking layering of core, types, and utils modules...")
    print(f"Scanning: {src_path}\n")

    all_violations: dict[Path, list[tuple[int, str]]] = {}
    for layer, pattern in FORBIDDEN_IMPORTS.items():
        all_violations.update(scan_directory(src_path, layer, pattern))

    if not all_violations:
        print(f"{GREEN}✓ No layering violations found!{RESET}")
        return 0

    total_violations = sum(len(v) for v in all_violations.values())
    print(f"{RED}✗ Found {total_violations} layering violations:{RESET}\n")

    for file_path, violations in sorted(all_violations.items()):
        try:
            rel_path = file_path.relative_to(project_root)
        except ValueError:
            rel_path = file_path

        print(f"{RED}{rel_path}{RESET}")
        for line_num, description in violations:
            print(f"  {line_num}: {description}")
        print()

    print(f"{RED}Layering check failed!{RESET}")
    print(
        "\nThe polling core must not depend on the application layer or the sinks."
        "\nMove HTTP-serving and exporter code to app/ or sinks/."
    )
    return 1


if __name__ == "__main__":
    sys.exit(main())
