"""
Runtime configuration.

Settings come from environment variables, optionally seeded from a
``.env`` file. Rule and exclusion tables are loaded once here and then
passed explicitly into the classifier and credit engine.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from loguru import logger

from fiscal_engine.rules import ExclusionList, RuleSet


def configure_logging(level: str = "INFO") -> None:
    """Replace loguru's default sink with a stderr sink at ``level``."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {name}:{line} - {message}",
    )


class Settings:
    """Runtime settings read from the environment."""

    def __init__(
        self,
        log_level: str = "INFO",
        rules_path: Optional[str] = None,
        exclusions_path: Optional[str] = None,
    ) -> None:
        self.log_level = log_level
        self.rules_path = Path(rules_path) if rules_path else None
        self.exclusions_path = Path(exclusions_path) if exclusions_path else None

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        load_dotenv(env_file)
        return cls(
            log_level=os.getenv("FISCAL_ENGINE_LOG_LEVEL", "INFO"),
            rules_path=os.getenv("FISCAL_ENGINE_RULES_PATH") or None,
            exclusions_path=os.getenv("FISCAL_ENGINE_EXCLUSIONS_PATH") or None,
        )

    def load_rule_set(self) -> RuleSet:
        if self.rules_path is None:
            return RuleSet.default()
        logger.info(f"Loading rule table from {self.rules_path}")
        return RuleSet.from_json(self.rules_path.read_text(encoding="utf-8"))

    def load_exclusions(self) -> ExclusionList:
        if self.exclusions_path is None:
            return ExclusionList.default()
        logger.info(f"Loading exclusion table from {self.exclusions_path}")
        return ExclusionList.from_json(
            self.exclusions_path.read_text(encoding="utf-8")
        )
