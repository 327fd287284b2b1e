"""Bootstraps the sentinel session loop with repository-relative imports."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path


def main() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(repo_root))

    # Lazy import after adjusting sys.path
    from sentinel.bootstrap import serve_forever  # type: ignore
    from sentinel.config import ConfigurationError, get_settings  # type: ignore

    try:
        settings = get_settings()
    except ConfigurationError as exc:
        logging.basicConfig(level=logging.ERROR, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        logging.getLogger("sentinel").error("%s", exc)
        sys.exit(2)

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    try:
        exit_code = asyncio.run(serve_forever(settings))
    except KeyboardInterrupt:
        exit_code = 0
    except ConfigurationError as exc:
        logging.getLogger("sentinel").error("%s", exc)
        exit_code = 2
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
