#!/usr/bin/env python3
"""Command-line entry point for the HCP to S3 migration tool.

Thin wrapper around hcp_migration.cli so the tool can run from a checkout:
    python hcp_to_s3.py list ...
    python hcp_to_s3.py migrate ...
"""

from __future__ import annotations

import sys
from pathlib import Path

# Ensure the repository root is importable even when this script is run via an absolute path.
REPO_ROOT = Path(__file__).resolve().parent
if str(REPO_ROOT) not in sys.path:  # pragma: no cover - import context dependent
    sys.path.insert(0, str(REPO_ROOT))

from hcp_migration.cli import main  # noqa: E402  pylint: disable=wrong-import-position

if __name__ == "__main__":  # pragma: no cover - script entry point
    try:
        raise SystemExit(main())
    except KeyboardInterrupt as exc:
        print("\n✗ Migration aborted by user.", file=sys.stderr)
        raise SystemExit(130) from exc
