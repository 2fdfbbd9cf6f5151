"""
Run the tsnescope command line interface from a source checkout.

This is equivalent to the installed `tsnescope` command; it only makes
the package importable when the project has not been pip installed.

Usage examples (from project_root):

  python scripts/run_tsne.py data/features.csv --id-column name
  python scripts/run_tsne.py data/pairs.csv --distance-table --perplexity 5
"""

import sys
from pathlib import Path

# ---------------------------------------------------------------------------
# Path setup so "tsnescope" can be imported when running this file directly
# ---------------------------------------------------------------------------

CURRENT_FILE_PATH: Path = Path(__file__).resolve()
PROJECT_ROOT_DIRECTORY: Path = CURRENT_FILE_PATH.parents[1]
SOURCE_DIRECTORY: Path = PROJECT_ROOT_DIRECTORY / "src"

if str(SOURCE_DIRECTORY) not in sys.path:
  sys.path.insert(0, str(SOURCE_DIRECTORY))

from tsnescope.cli import main  # type: ignore  # noqa: E402


if __name__ == "__main__":
  sys.exit(main())
