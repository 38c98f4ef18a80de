"""
wi init - Create config files and the database.
"""

from pathlib import Path

from workitems.lib.config import load_config, resolve_config_dir, write_default_config
from workitems.store.sqlite import SQLiteStore


def cmd_init(args) -> int:
    """Write default workitems.env / workflow.yaml and create the database."""
    config_dir = resolve_config_dir(Path(args.config_dir) if args.config_dir else None)
    written = write_default_config(config_dir, force=args.force)
    for path in written:
        print(f"Wrote {path}")

    config = load_config(config_dir)
    store = SQLiteStore(config.database_path)
    store.close()
    print(f"Database ready: {config.database_path}")
    return 0
