from __future__ import annotations

import logging
import os
from typing import Iterable, Iterator, List, NamedTuple, Optional
from urllib.parse import urlsplit

from pygments.lexers import PythonLexer, get_lexer_for_filename
from pygments.token import String
from pygments.util import ClassNotFound

from hosts import has_placeholder, has_tld_suffix, is_ip_literal
from py_ast_scanner import python_string_literals

logger = logging.getLogger(__name__)

MAX_SINGLE_FILE_BYTES = 1 * 1024 * 1024

ALLOWED_EXTS = {
    ".php", ".module", ".inc", ".install", ".theme", ".profile",
    ".py", ".js", ".mjs", ".ts", ".java", ".go", ".c", ".cc", ".cpp", ".h", ".hpp",
    ".rb", ".cs", ".kt", ".swift", ".rs",
}

# Drupal's PHP extensions are not registered with pygments under these names
LEXER_ALIASES = {
    ".module": "x.php",
    ".inc": "x.php",
    ".install": "x.php",
    ".theme": "x.php",
    ".profile": "x.php",
}

SKIP_TOKENS = (String.Regex, String.Affix)
QUOTE_CHARS = "'\"`"


class CandidateURL(NamedTuple):
    scheme: str
    host: str
    port: Optional[int] = None

    @property
    def origin(self) -> str:
        if self.port is None:
            return f"{self.scheme}://{self.host}"
        return f"{self.scheme}://{self.host}:{self.port}"


def _ext(name: str) -> str:
    name = name.lower()
    i = name.rfind(".")
    return name[i:] if i >= 0 else ""


def _lexer_literals(filename: str, text: str, lexer=None) -> List[str]:
    if lexer is None:
        ext = _ext(filename)
        try:
            lexer = get_lexer_for_filename(LEXER_ALIASES.get(ext, filename), stripnl=False)
        except ClassNotFound:
            return []

    literals: List[str] = []
    buf: List[str] = []
    for ttype, value in lexer.get_tokens(text):
        if ttype in String and not any(ttype in skip for skip in SKIP_TOKENS):
            buf.append(value)
            continue
        if buf:
            literals.append("".join(buf))
            buf = []
    if buf:
        literals.append("".join(buf))
    return literals


def string_literals(filename: str, text: str) -> List[str]:
    """String literal tokens of one source file, using the language's own grammar."""
    if _ext(filename) == ".py":
        found = python_string_literals(text)
        if found is not None:
            return found
        return _lexer_literals(filename, text, lexer=PythonLexer(stripnl=False))
    return _lexer_literals(filename, text)


def candidate_from_literal(literal: str) -> Optional[CandidateURL]:
    s = literal.strip(QUOTE_CHARS)

    try:
        parts = urlsplit(s)
        port = parts.port
    except ValueError:
        return None

    if parts.scheme not in ("http", "https") or not s.startswith(parts.scheme + ":"):
        return None

    host = parts.hostname
    if not host:
        return None
    host = host.lower()

    if host == "localhost" or is_ip_literal(host):
        return None
    if not has_tld_suffix(host):
        return None
    if has_placeholder(host) or has_placeholder(parts.netloc):
        return None

    return CandidateURL(parts.scheme, host, port)


def _iter_source_files(root: str) -> Iterator[str]:
    def _walk_error(err: OSError):
        logger.warning("Cannot read directory %s: %s", getattr(err, "filename", root), err)

    for dirpath, dirnames, filenames in os.walk(root, onerror=_walk_error):
        dirnames.sort()
        for name in sorted(filenames):
            if _ext(name) in ALLOWED_EXTS:
                yield os.path.join(dirpath, name)


def _read_source(path: str) -> Optional[str]:
    try:
        if os.path.getsize(path) > MAX_SINGLE_FILE_BYTES:
            logger.debug("Skipping oversized file %s", path)
            return None
        with open(path, "rb") as fh:
            raw = fh.read()
    except OSError as e:
        logger.warning("Skipping unreadable file %s: %s", path, e)
        return None
    return raw.decode("utf-8", errors="replace")


def extract_urls(root_dirs: Iterable[str], base_dir: Optional[str] = None) -> List[CandidateURL]:
    """
    Walk the given source directories and collect absolute http(s) origins
    referenced from string literals. Relative roots resolve against base_dir.
    The result is deduplicated by origin and sorted by it.
    """
    found = {}

    for root in root_dirs:
        full = root if (base_dir is None or os.path.isabs(root)) else os.path.join(base_dir, root)
        if not os.path.isdir(full):
            logger.info("Scan directory %s does not exist, skipping", full)
            continue

        for path in _iter_source_files(full):
            text = _read_source(path)
            if text is None:
                continue
            for literal in string_literals(path, text):
                cand = candidate_from_literal(literal)
                if cand is not None:
                    found.setdefault(cand.origin, cand)

    return [found[k] for k in sorted(found)]
