#!/usr/bin/env python
"""
Build pipeline - compiles discount rules and runs the test suite.

Usage:
    python scripts/build_all.py
"""
import subprocess
import sys
from pathlib import Path

# Add src to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / 'src'))

from quickshop_pricing.config.settings import configure_logging, get_settings
from quickshop_pricing.rules.compile_rules import compile_rules


def main():
    settings = get_settings()
    configure_logging(settings)

    print("=" * 60)
    print("QUICKSHOP PRICING BUILD PIPELINE")
    print("=" * 60)
    print()

    print("[1/2] Compiling discount rules...")
    success, rules, errors = compile_rules(settings.rules_csv, settings.compiled_rules)

    if not success:
        print(f"\n❌ BUILD FAILED ({len(errors)} rule errors)")
        sys.exit(1)

    print()
    print("[2/2] Running tests...")

    test_result = subprocess.run(
        [sys.executable, '-m', 'pytest', 'tests', '-v', '--tb=short'],
        cwd=project_root
    )

    if test_result.returncode != 0:
        print("\n❌ TESTS FAILED")
        sys.exit(1)

    print()
    print("=" * 60)
    print("✅ BUILD COMPLETE")
    print("=" * 60)
    print()
    print("Summary:")
    print(f"  Rules: {len(rules)} ({sum(1 for r in rules if r.active)} active)")
    by_type = {}
    for r in rules:
        by_type[r.kind.value] = by_type.get(r.kind.value, 0) + 1
    for kind, count in sorted(by_type.items()):
        print(f"  {kind}: {count}")


if __name__ == "__main__":
    main()
