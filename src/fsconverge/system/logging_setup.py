# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.02
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/fsconverge/system/logging_setup.py

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from fsconverge.config.manager import EngineConfig, load_merged_engine_config


def setup_logging(debug: bool = False, config: Optional[EngineConfig] = None) -> None:
    """Setup loguru logging for the engine and CLI.

    Configures:
    - Console output: WARNING+ (DEBUG+ with debug=True)
    - File output: DEBUG+ if local_log is configured
    """
    logger.remove()

    logger.add(
        sys.stderr,
        level="DEBUG" if debug else "WARNING",
        format="<level>{level}</level>: {message}",
        colorize=True
    )

    try:
        if config is None:
            config = load_merged_engine_config()
        if config.local_log:
            log_dir = Path(config.local_log)
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / "fsconverge.log"
            logger.add(
                log_file,
                level="DEBUG",
                format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}",
                rotation="10 MB",
                retention="30 days",
                compression="gz"
            )
            logger.debug(f"File logging enabled: {log_file}")

    except Exception as e:
        # Don't fail the entire run if logging setup fails
        logger.warning(f"Failed to setup file logging: {e}")
