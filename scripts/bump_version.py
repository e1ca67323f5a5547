#!/usr/bin/env python3
"""
Version bump for snowlink.

Rewrites the version in pyproject.toml, the package __init__ and the README
badge line, then opens a CHANGELOG.md section for the new release.

Usage:
    python scripts/bump_version.py 0.2.0
    python scripts/bump_version.py 0.1.1 --dry-run
"""

import argparse
import re
import sys
from datetime import date
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent

# File -> (pattern, replacement) pairs
VERSION_FILES = {
    "pyproject.toml": [
        (r'^version = "[^"]+"', 'version = "{version}"'),
    ],
    "src/snowlink/__init__.py": [
        (r'^__version__ = "[^"]+"', '__version__ = "{version}"'),
    ],
    "README.md": [
        (r'\*\*Current Version:\*\* [0-9.]+', '**Current Version:** {version}'),
    ],
}

CHANGELOG_TEMPLATE = """## [{version}] - {date}

### Added
-

### Changed
-

### Fixed
-
"""


def current_version(root: Path = ROOT) -> str:
    """Read the version declared in pyproject.toml."""
    pyproject = root / "pyproject.toml"
    if not pyproject.exists():
        sys.exit(f"Error: {pyproject} not found")

    match = re.search(r'^version = "([^"]+)"', pyproject.read_text(encoding="utf-8"), re.MULTILINE)
    if not match:
        sys.exit("Error: Could not find version in pyproject.toml")
    return match.group(1)


def validate_version(version: str) -> None:
    if not re.match(r'^\d+\.\d+\.\d+$', version):
        sys.exit(f"Error: Invalid version '{version}' (expected MAJOR.MINOR.PATCH, e.g. 0.2.0)")


def update_file(root: Path, relative: str, patterns, version: str, dry_run: bool = False) -> bool:
    """Apply version patterns to one file. Returns True when it changed."""
    path = root / relative
    if not path.exists():
        print(f"  {relative}: not found, skipping")
        return False

    original = path.read_text(encoding="utf-8")
    content = original
    for pattern, replacement in patterns:
        content = re.sub(pattern, replacement.format(version=version), content, flags=re.MULTILINE)

    if content == original:
        print(f"  {relative}: no changes needed")
        return False

    if dry_run:
        print(f"  {relative}: would update")
        for old_line, new_line in zip(original.splitlines(), content.splitlines()):
            if old_line != new_line:
                print(f"    - {old_line}")
                print(f"    + {new_line}")
    else:
        path.write_text(content, encoding="utf-8")
        print(f"  {relative}: updated")
    return True


def add_changelog_entry(root: Path, version: str, today: str, dry_run: bool = False) -> bool:
    """Insert an empty section for `version` above the newest release."""
    changelog = root / "CHANGELOG.md"
    if not changelog.exists():
        print("  CHANGELOG.md: not found, skipping")
        return False

    content = changelog.read_text(encoding="utf-8")
    if f"## [{version}]" in content:
        print(f"  CHANGELOG.md: {version} already listed")
        return False

    lines = content.split("\n")
    insert_at = next((i for i, line in enumerate(lines) if line.startswith("## [")), len(lines))
    entry = CHANGELOG_TEMPLATE.format(version=version, date=today)
    lines.insert(insert_at, entry)

    if dry_run:
        print(f"  CHANGELOG.md: would add\n\n{entry}")
    else:
        changelog.write_text("\n".join(lines), encoding="utf-8")
        print(f"  CHANGELOG.md: added {version} (fill in the changes)")
    return True


def main():
    parser = argparse.ArgumentParser(description="Bump the snowlink version")
    parser.add_argument("version", help="New version number (e.g. 0.2.0)")
    parser.add_argument("--dry-run", action="store_true", help="Show changes without writing")
    parser.add_argument("--skip-changelog", action="store_true", help="Do not touch CHANGELOG.md")
    args = parser.parse_args()

    validate_version(args.version)
    old = current_version()
    today = date.today().isoformat()

    print("=" * 60)
    print(f"snowlink version bump: {old} -> {args.version}")
    if args.dry_run:
        print("DRY RUN - no files will be modified")
    print("=" * 60)

    if old == args.version:
        sys.exit(f"Version is already {args.version}")

    updated = sum(
        update_file(ROOT, relative, patterns, args.version, args.dry_run)
        for relative, patterns in VERSION_FILES.items()
    )
    if not args.skip_changelog:
        updated += add_changelog_entry(ROOT, args.version, today, args.dry_run)

    print("=" * 60)
    if args.dry_run:
        print(f"Would update {updated} file(s)")
    else:
        print(f"Updated {updated} file(s) to {args.version}")
        print(f"  git commit -am 'chore: bump version to v{args.version}'")
        print(f"  git tag -a v{args.version} -m 'Release v{args.version}'")


if __name__ == "__main__":
    main()
