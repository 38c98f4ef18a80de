#!/usr/bin/env python3
"""Work items CLI entrypoint."""

import argparse
import logging
import sys
from pathlib import Path

from workitems.lib.context import build_context
from workitems.lib.errors import ConfigError
from workitems.lib.validate import ValidationError
from workitems.commands import history as cmd_history_module
from workitems.commands import importer as cmd_import_module
from workitems.commands import init as cmd_init_module
from workitems.commands import next as cmd_next_module
from workitems.commands import show as cmd_show_module
from workitems.commands import transition as cmd_transition_module
from workitems.commands import verify as cmd_verify_module


def get_config_dir(args) -> Path | None:
    return Path(args.config_dir) if args.config_dir else None


def with_context(command):
    """Wrap a command module function so it receives the app context."""
    def run(args):
        try:
            ctx = build_context(get_config_dir(args))
        except (ConfigError, ValidationError) as e:
            print(f"ERROR: Invalid configuration: {e}")
            return 2
        return command(args, ctx)
    return run


def cmd_init(args):
    try:
        return cmd_init_module.cmd_init(args)
    except (ConfigError, ValidationError) as e:
        print(f"ERROR: Invalid configuration: {e}")
        return 2


def cmd_serve(args):
    from workitems import server
    try:
        server.main(get_config_dir(args))
    except (ConfigError, ValidationError) as e:
        print(f"ERROR: Invalid configuration: {e}", file=sys.stderr)
        return 2
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(prog="wi", description="Hierarchical work item tracking")
    parser.add_argument('--config-dir', '-C', help='Directory with workitems.env / workflow.yaml')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # wi init
    p_init = subparsers.add_parser('init', help='Write default config and create the database')
    p_init.add_argument('--force', action='store_true', help='Overwrite existing config files')
    p_init.set_defaults(func=cmd_init)

    # wi import
    p_import = subparsers.add_parser('import', help='Import a work tree from YAML/JSON')
    p_import.add_argument('file', help='Work tree file')
    p_import.set_defaults(func=with_context(cmd_import_module.cmd_import))

    # wi show
    p_show = subparsers.add_parser('show', help='Show project trees')
    p_show.add_argument('project_id', nargs='?', help='Project ID (all projects if omitted)')
    p_show.add_argument('--json', action='store_true', help='Print JSON instead of a tree')
    p_show.set_defaults(func=with_context(cmd_show_module.cmd_show))

    # wi transition
    p_transition = subparsers.add_parser('transition', help='Change the status of a project, feature or task')
    p_transition.add_argument('id', help='Entity ID')
    p_transition.add_argument('status', nargs='?', help='Target status')
    p_transition.add_argument('--trigger', '-t', help='Named trigger instead of a status (start, complete, ...)')
    p_transition.add_argument('--summary', '-m', help='Note stored with the transition')
    p_transition.add_argument('--session', help='Session ID used for locking')
    p_transition.add_argument('--json', action='store_true', help='Print the raw result')
    p_transition.set_defaults(func=with_context(cmd_transition_module.cmd_transition))

    # wi next
    p_next = subparsers.add_parser('next', help='Recommend the next status')
    p_next.add_argument('id', help='Entity ID')
    p_next.add_argument('--json', action='store_true', help='Print the raw result')
    p_next.set_defaults(func=with_context(cmd_next_module.cmd_next))

    # wi verify
    p_verify = subparsers.add_parser('verify', help='Set or check Verification criteria')
    p_verify.add_argument('id', help='Entity ID')
    p_verify.add_argument('criteria', nargs='?', help='JSON: [{"criteria": "...", "pass": true}]')
    p_verify.set_defaults(func=with_context(cmd_verify_module.cmd_verify))

    # wi history
    p_history = subparsers.add_parser('history', help='Show recorded transitions')
    p_history.add_argument('id', help='Entity ID')
    p_history.add_argument('--json', action='store_true', help='Print JSON')
    p_history.set_defaults(func=with_context(cmd_history_module.cmd_history))

    # wi serve
    p_serve = subparsers.add_parser('serve', help='Run the MCP tool server on stdio')
    p_serve.set_defaults(func=cmd_serve)

    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
            stream=sys.stderr,
        )

    return args.func(args)


if __name__ == '__main__':
    sys.exit(main())
