"""Entry point for `python -m nanoclaw` / `nanoclaw`."""

from __future__ import annotations

import asyncio
import sys


def main() -> None:
    from nanoclaw.app import NanoclawApp
    from nanoclaw.config import get_settings
    from nanoclaw.logger import apply_log_level, logger

    s = get_settings()
    apply_log_level(s.logging.level)

    token = s.bot_token
    if not token:
        logger.error("TELEGRAM_BOT_TOKEN environment variable is required")
        sys.exit(1)

    try:
        asyncio.run(NanoclawApp(token).run())
    except RuntimeError as exc:
        logger.error("Failed to start NanoClaw", err=str(exc))
        sys.exit(1)


if __name__ == "__main__":
    main()
