"""MCP server exposing work item status tools over stdio."""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from workitems.lib.context import AppContext, build_context
from workitems.lib.tree import build_tree

logger = logging.getLogger(__name__)

mcp = FastMCP("workitems")

_context: Optional[AppContext] = None


def set_context(ctx: Optional[AppContext]) -> None:
    """Install the context the tools run against (None resets it)."""
    global _context
    _context = ctx


def _ctx() -> AppContext:
    global _context
    if _context is None:
        _context = build_context()
    return _context


@mcp.tool()
def request_transition(
    transitions: List[Dict[str, Any]],
    session_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Apply one or more status transitions.

    Each entry is {"entity_id": ..., "status": ...} or
    {"entity_id": ..., "trigger": "start" | "submit" | "complete" | ...},
    optionally with a "summary" note. Completion is refused while
    verification criteria fail, blocking tasks are open, or children are
    unfinished. Parents advance automatically when their children do.
    """
    if not transitions:
        return {
            "results": [],
            "summary": {"total": 0, "succeeded": 0, "failed": 0, "cascades_applied": 0},
        }
    return _ctx().orchestrator.transition_many(transitions, session_id=session_id)


@mcp.tool()
def get_next_status(entity_id: str) -> Dict[str, Any]:
    """Recommend the next status for a project, feature or task, and whether completion is blocked."""
    return _ctx().orchestrator.next_status(entity_id)


@mcp.tool()
def get_work_tree(project_id: str) -> Dict[str, Any]:
    """Return a project with its features and tasks and their statuses."""
    try:
        tree = build_tree(_ctx().store, project_id)
    except Exception as e:
        logger.exception(f"get_work_tree failed for {project_id}")
        return {"success": False, "error_code": "DATABASE_ERROR", "error_detail": str(e)}
    if tree is None:
        return {
            "success": False,
            "error_code": "RESOURCE_NOT_FOUND",
            "error_detail": f"Project {project_id} not found",
        }
    return {"success": True, "project": tree}


def main(config_dir: Optional[Path] = None) -> None:
    set_context(build_context(config_dir))
    logger.info("Starting workitems MCP server on stdio")
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
