"""Allow ``python -m image_transform``."""

from __future__ import annotations

import sys


def main() -> None:
    from image_transform import run
    sys.exit(run(sys.argv[1:]))


if __name__ == "__main__":
    main()
