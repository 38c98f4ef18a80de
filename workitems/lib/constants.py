"""Shared constants for work items."""

from enum import Enum


class StatusMode(Enum):
    """Which transition table applies.

    STRICT allows only the enumerated edges; LEGACY additionally allows any
    forward jump along an entity type's lifecycle.
    """

    STRICT = "strict"
    LEGACY = "legacy"


LOCK_POLICY_BLOCK = "block"
LOCK_POLICY_FAIL_FAST = "fail_fast"
LOCK_POLICIES = (LOCK_POLICY_BLOCK, LOCK_POLICY_FAIL_FAST)

# Config file names and lookup
ENV_FILE = "workitems.env"
WORKFLOW_FILE = "workflow.yaml"
HOME_ENV_VAR = "WORKITEMS_HOME"
DEFAULT_DATABASE_PATH = ".workitems/workitems.db"

# Seconds
DEFAULT_LOCK_TIMEOUT = 10.0
DEFAULT_LOCK_TTL = 300.0
DEFAULT_CASCADE_LOCK_TIMEOUT = 2.0

VERIFICATION_SECTION_TITLE = "Verification"

# Transition record trigger kinds
TRIGGER_MANUAL = "manual"
TRIGGER_CASCADE = "cascade"
