"""Console entrypoint for dbtrace."""
from __future__ import annotations

from dbtrace.cli.app import app


def main() -> None:
    app()


if __name__ == "__main__":
    main()
