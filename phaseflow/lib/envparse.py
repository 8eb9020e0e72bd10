"""
Reader and writer for project.env.

project.env holds plain KEY=value pairs. Nothing is expanded or
executed; values carrying shell metacharacters are refused outright so
the file stays safe to source from a shell as well.
"""

import re
from pathlib import Path

_KEY = re.compile(r'^[A-Z][A-Z0-9_]*$')

# backticks, $( ), ${ }, ';', '|' (covers '||'), '&&'
_UNSAFE_VALUE = re.compile(r'`|\$\(|\$\{|;|\||&&')

_QUOTES = ('"', "'")


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] in _QUOTES and value[-1] == value[0]:
        return value[1:-1]
    return value


def parse_env(text: str) -> dict[str, str]:
    """
    Turn env-file text into a dict.

    Raises:
        ValueError: naming the offending line number
    """
    values: dict[str, str] = {}
    for lineno, raw in enumerate(text.splitlines(), 1):
        line = raw.strip()
        if line == "" or line.startswith("#"):
            continue

        key, sep, value = line.partition("=")
        if not sep:
            raise ValueError(f"Line {lineno}: expected KEY=value")
        key = key.strip()
        if _KEY.fullmatch(key) is None:
            raise ValueError(f"Line {lineno}: Invalid key '{key}'")

        value = _unquote(value.strip())
        if _UNSAFE_VALUE.search(value):
            raise ValueError(f"Line {lineno}: Forbidden shell syntax in {key}")
        values[key] = value
    return values


def load_env(filepath: Path) -> dict[str, str]:
    """Parse filepath; an absent file is an empty config."""
    try:
        text = filepath.read_text()
    except FileNotFoundError:
        return {}
    return parse_env(text)


def format_env(values: dict[str, str]) -> str:
    """Inverse of parse_env: sorted KEY="value" lines."""
    return "".join(f'{key}="{values[key]}"\n' for key in sorted(values))
