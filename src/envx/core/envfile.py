"""
Line-preserving .env document model.

Only the values envx touches are re-rendered; comments, blank lines, ordering,
``export`` prefixes and lines it does not understand are written back exactly
as they were read.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple, Union

from .exceptions import EnvFileError

logger = logging.getLogger(__name__)

FORMAT_ENV = "env"
FORMAT_JSON = "json"
FORMATS = (FORMAT_ENV, FORMAT_JSON)

_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.\-]*$")
_ESCAPE_RE = re.compile(r"\\(.)", re.DOTALL)
_UNESCAPES = {"n": "\n", "r": "\r", "t": "\t", '"': '"', "\\": "\\"}
_NEEDS_QUOTES = re.compile(r"[\s#\"']")


def _unescape(value: str) -> str:
    return _ESCAPE_RE.sub(lambda m: _UNESCAPES.get(m.group(1), m.group(0)), value)


def _escape(value: str) -> str:
    return (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )


@dataclass
class Entry:
    """One ``KEY=value`` line."""

    key: str
    value: str
    quote: str = ""
    export: bool = False
    comment: str = ""
    # original text; dropped once the value changes so the line is re-rendered
    raw: Optional[str] = field(default=None, repr=False)

    def render(self) -> str:
        if self.raw is not None:
            return self.raw

        value = self.value
        if value == "":
            text = ""
        elif _NEEDS_QUOTES.search(value):
            if self.quote == "'" and "'" not in value and "\n" not in value:
                text = f"'{value}'"
            else:
                text = f'"{_escape(value)}"'
        elif self.quote == "'":
            text = f"'{value}'"
        elif self.quote == '"':
            text = f'"{_escape(value)}"'
        else:
            text = value

        prefix = "export " if self.export else ""
        return f"{prefix}{self.key}={text}{self.comment}"


def _closing_quote(text: str, q: str) -> int:
    # backslash escapes only count inside double quotes
    i = 1
    while i < len(text):
        c = text[i]
        if c == "\\" and q == '"':
            i += 2
            continue
        if c == q:
            return i
        i += 1
    return -1


def parse_line(line: str) -> Union[Entry, str]:
    """Parse one line; anything that is not an assignment comes back as a str."""
    stripped = line.strip()
    if not stripped or stripped.startswith("#") or "=" not in stripped:
        return line

    export = False
    body = stripped
    if body.startswith("export "):
        export = True
        body = body[len("export "):].lstrip()

    key, _, rest = body.partition("=")
    key = key.strip()
    if not _KEY_RE.match(key):
        return line

    rest = rest.strip()
    quote = ""
    comment = ""
    if len(rest) >= 2 and rest[0] in ("'", '"'):
        q = rest[0]
        end = _closing_quote(rest, q)
        tail = rest[end + 1:] if end != -1 else None
        if end != -1 and (not tail.strip() or tail.lstrip().startswith("#")):
            quote = q
            value = rest[1:end]
            if q == '"':
                value = _unescape(value)
            comment = tail
        else:
            value = rest
    else:
        value = rest
        m = re.search(r"\s+#", value)
        if m:
            comment = value[m.start():]
            value = value[: m.start()]

    return Entry(key=key, value=value, quote=quote, export=export, comment=comment, raw=line)


class EnvFile:
    """An ordered .env document."""

    def __init__(self, lines: Optional[List[Union[Entry, str]]] = None, path: Optional[Path] = None):
        self.lines: List[Union[Entry, str]] = list(lines or [])
        self.path = path
        self.trailing_newline = True

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @classmethod
    def parse(cls, text: str) -> "EnvFile":
        doc = cls([parse_line(line) for line in text.splitlines()])
        doc.trailing_newline = text.endswith("\n") or text == ""
        return doc

    @classmethod
    def load(cls, path: Path | str) -> "EnvFile":
        """Read ``path``; a missing file gives an empty document."""
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("%s does not exist, starting empty", path)
            doc = cls(path=path)
            return doc
        except UnicodeDecodeError as e:
            raise EnvFileError(f"{path} is not valid UTF-8") from e

        doc = cls.parse(text)
        doc.path = path
        return doc

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def entries(self) -> Iterator[Entry]:
        for line in self.lines:
            if isinstance(line, Entry):
                yield line

    def _find(self, key: str) -> Optional[Entry]:
        found = None
        for entry in self.entries():
            if entry.key == key:
                found = entry
        return found

    def keys(self) -> List[str]:
        return list(self.to_dict().keys())

    def items(self) -> List[Tuple[str, str]]:
        return list(self.to_dict().items())

    def to_dict(self) -> Dict[str, str]:
        # later assignments win, matching how shells and dotenv loaders behave
        result: Dict[str, str] = {}
        for entry in self.entries():
            result[entry.key] = entry.value
        return result

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        entry = self._find(key)
        return entry.value if entry is not None else default

    def __contains__(self, key: str) -> bool:
        return self._find(key) is not None

    def __len__(self) -> int:
        return len(self.to_dict())

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def set(self, key: str, value: str) -> None:
        """Update the last assignment of ``key`` or append a new one."""
        if not _KEY_RE.match(key):
            raise EnvFileError(f"invalid variable name: {key!r}")
        entry = self._find(key)
        if entry is None:
            self.lines.append(Entry(key=key, value=value))
            return
        if entry.value != value:
            entry.value = value
            entry.raw = None

    def update_values(self, fn, keys: Optional[List[str]] = None) -> List[str]:
        """Replace each selected value with ``fn(value)``; return changed keys."""
        selected = set(keys) if keys else None
        changed = []
        for entry in self.entries():
            if selected is not None and entry.key not in selected:
                continue
            new = fn(entry.value)
            if new != entry.value:
                entry.value = new
                entry.raw = None
                changed.append(entry.key)
        return changed

    def remove(self, key: str) -> bool:
        before = len(self.lines)
        self.lines = [l for l in self.lines if not (isinstance(l, Entry) and l.key == key)]
        return len(self.lines) != before

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def render(self, format: str = FORMAT_ENV) -> str:
        if format == FORMAT_JSON:
            return json.dumps(self.to_dict(), indent=2, ensure_ascii=False) + "\n"
        if format != FORMAT_ENV:
            raise EnvFileError(f"unsupported format: {format}")

        out = "\n".join(l.render() if isinstance(l, Entry) else l for l in self.lines)
        if self.lines and self.trailing_newline:
            out += "\n"
        return out

    def save(self, path: Path | str | None = None, format: str = FORMAT_ENV, backup: bool = False) -> Path:
        """Write the document; with ``backup`` the old file is kept as ``<path>.bak``."""
        target = Path(path) if path is not None else self.path
        if target is None:
            raise EnvFileError("no path to save to")

        content = self.render(format)
        if backup and target.exists():
            shutil.copy2(target, target.with_name(target.name + ".bak"))

        target.parent.mkdir(parents=True, exist_ok=True)
        # write next to the target and swap in, so a crash never leaves half a file
        fd, tmp = tempfile.mkstemp(prefix=f".{target.name}.", dir=str(target.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(content)
            if target.exists():
                shutil.copymode(target, tmp)
            else:
                os.chmod(tmp, 0o600)
            os.replace(tmp, target)
        except BaseException:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise
        logger.debug("wrote %s", target)
        return target


def build_filename(base: str, name: Optional[str] = None) -> str:
    """``.env`` + ``dev`` -> ``.env.dev``; no name keeps the base."""
    if not name:
        return base
    return f"{base}.{name}"
