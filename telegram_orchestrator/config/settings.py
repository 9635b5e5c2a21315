from __future__ import annotations

import os
from pathlib import Path

# TOML file with Telegram credentials, AI backend and tracked users.
CONFIG_PATH: Path = Path(os.getenv("ORCHESTRATOR_CONFIG", "config.toml"))

# Logging
LOG_DIR: Path = Path(os.getenv("ORCHESTRATOR_LOG_DIR", "data/logs"))
LOG_FILE: Path = LOG_DIR / "telegram_orchestrator.log"
LOG_LEVEL: str = os.getenv("ORCHESTRATOR_LOG_LEVEL", "INFO").upper()

# Bot API (control channel)
BOT_API_BASE_URL: str = os.getenv("BOT_API_BASE_URL", "https://api.telegram.org")

# Long-poll window for getUpdates (seconds). The HTTP timeout must exceed it.
GETUPDATES_TIMEOUT: int = int(os.getenv("GETUPDATES_TIMEOUT", "30"))

# Timeout for every other outbound HTTP call (Bot API and generation backend).
HTTP_TIMEOUT_SECONDS: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "60"))

# Pause after a failed getUpdates before polling again.
POLL_ERROR_BACKOFF_SECONDS: float = float(os.getenv("POLL_ERROR_BACKOFF_SECONDS", "5"))
