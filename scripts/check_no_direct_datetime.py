from __future__ import annotations

import re
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
PACKAGE_DIR = ROOT / "docere"

PATTERNS = (
    r"\bdatetime\.now\(",
    r"\bdatetime\.utcnow\(",
    r"\bdate\.today\(",
    r"\bdatetime\.today\(",
    r"\btime\.time\(",
)
COMPILED = [re.compile(pattern) for pattern in PATTERNS]


def _is_excluded(path: Path) -> bool:
    path_str = path.as_posix()
    if path_str.endswith("docere/core/time_provider.py"):
        return True
    if "/alembic/" in path_str or "/tests/" in path_str:
        return True
    return False


def find_violations(package_dir: Path = PACKAGE_DIR) -> list[tuple[str, int, str]]:
    violations: list[tuple[str, int, str]] = []
    for file_path in sorted(package_dir.rglob("*.py")):
        if _is_excluded(file_path):
            continue
        lines = file_path.read_text(encoding="utf-8").splitlines()
        for idx, line in enumerate(lines, start=1):
            if any(regex.search(line) for regex in COMPILED):
                violations.append((str(file_path.relative_to(ROOT)), idx, line.strip()))
    return violations


def main() -> int:
    violations = find_violations()
    if violations:
        print("Direct clock usage is not allowed in docere/; inject a TimeProvider instead:")
        for path, line_no, line in violations:
            print(f" - {path}:{line_no}: {line}")
        return 1

    print("No direct clock usage detected in docere/.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
