"""
Safe parser for workitems.env.

The file is read as KEY=value lines and never handed to a shell. Values
containing shell constructs are refused outright rather than escaped.
"""

import re
from pathlib import Path

# Backticks, $( and ${ substitution, ; and && chaining, pipes
FORBIDDEN = re.compile(r"`|\$\(|\$\{|;|&&|\|")

KEY_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]*$")

QUOTES = ('"', "'")

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in QUOTES:
        return value[1:-1]
    return value


def _parse_line(lineno: int, line: str) -> tuple[str, str]:
    if line.startswith("export "):
        line = line[len("export "):].lstrip()

    key, sep, value = line.partition("=")
    if not sep:
        raise ValueError(f"Line {lineno}: Invalid syntax (no '=')")

    key = key.strip()
    if not KEY_PATTERN.match(key):
        raise ValueError(f"Line {lineno}: Invalid key '{key}'")

    value = _unquote(value.strip())
    if FORBIDDEN.search(value):
        raise ValueError(f"Line {lineno}: Forbidden pattern in value for {key}")
    return key, value


def load_env(filepath: Path) -> dict[str, str]:
    """
    Read an env file into a dict. Blank lines and # comments are skipped,
    an optional "export " prefix and matching quotes are stripped.

    Raises:
        FileNotFoundError: if the file doesn't exist
        ValueError: on bad syntax or a forbidden pattern
    """
    path = Path(filepath)
    if not path.exists():
        raise FileNotFoundError(f"Env file not found: {filepath}")

    values = {}
    for lineno, raw in enumerate(path.read_text().splitlines(), 1):
        line = raw.strip()
        if line and not line.startswith("#"):
            key, value = _parse_line(lineno, line)
            values[key] = value
    return values


def parse_bool(value: str) -> bool:
    """
    Raises:
        ValueError: if value is not one of the accepted spellings
    """
    lowered = value.strip().lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise ValueError(f"Not a boolean: '{value}'")
