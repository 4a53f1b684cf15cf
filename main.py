"""
Timelog Assistant — Entry Point.

`python main.py` starts the Telegram bot; `timelog-bot` does the same once
the package is installed.
"""

import logging

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
# Polling otherwise logs one httpx line per getUpdates request
logging.getLogger("httpx").setLevel(logging.WARNING)

from timelog.bot.telegram_bot import main

if __name__ == "__main__":
    main()
