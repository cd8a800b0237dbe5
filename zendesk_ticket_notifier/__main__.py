from __future__ import annotations

from .main import main as run_main


def entrypoint() -> int:
    return run_main()


if __name__ == "__main__":
    raise SystemExit(entrypoint())
