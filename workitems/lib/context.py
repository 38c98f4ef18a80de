"""
Application wiring shared by the CLI and the tool server.

Builds the config, store, lock coordinator and orchestrator once per
process so every surface runs the same workflow rules.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from workitems.lib.config import Config, load_config
from workitems.runner.locking import LockCoordinator
from workitems.store.base import EntityStore
from workitems.store.sqlite import SQLiteStore
from workitems.workflow.engine import StatusTransitionOrchestrator

logger = logging.getLogger(__name__)

__all__ = ["AppContext", "build_context"]


@dataclass
class AppContext:
    config: Config
    store: EntityStore
    locks: LockCoordinator
    orchestrator: StatusTransitionOrchestrator


def build_context(config_dir: Optional[Path] = None, store: Optional[EntityStore] = None) -> AppContext:
    """Load config and wire up the store and orchestrator.

    Args:
        config_dir: Directory holding workitems.env / workflow.yaml
        store: Store to use instead of the configured SQLite database
    """
    config = load_config(config_dir)
    if store is None:
        logger.debug(f"Opening database {config.database_path}")
        store = SQLiteStore(config.database_path)

    locks = LockCoordinator(
        enabled=config.locking.enabled,
        ttl=config.locking.ttl,
        policy=config.locking.policy,
    )
    orchestrator = StatusTransitionOrchestrator(store, locks, config)
    return AppContext(config=config, store=store, locks=locks, orchestrator=orchestrator)
