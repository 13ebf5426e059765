"""Response comparison: text extraction, SQL error signatures, DB fingerprinting, similarity."""

import json
import re
from typing import Any

import httpx


# Only real engine errors; reflected payload text must not match.
_SQL_ERROR_RX = [
    # MySQL / MariaDB
    r"mysql.*error",
    r"warning.*mysql",
    r"valid MySQL result",
    r"You have an error in your SQL syntax",
    r"Unknown column '[^']+' in",
    # PostgreSQL
    r"PostgreSQL.*ERROR",
    r"Warning.*\Wpg_",
    r"valid PostgreSQL result",
    r"syntax error at or near",
    r"unterminated quoted string at or near",
    # Oracle
    r"Oracle error",
    r"Oracle.*Driver",
    r"ORA-\d{5}",
    r"quoted string not properly terminated",
    # SQL Server / ODBC / OLE DB
    r"SQLServer JDBC Driver",
    r"SqlException",
    r"OLE DB.*error",
    r"Unclosed quotation mark",
    r"Incorrect syntax near",
    r"Microsoft.*ODBC.*Driver",
    # Generic drivers
    r"SQL syntax.*error",
    r"SQLSTATE\[\w+\]",
    r"PDOException",
    # SQLite
    r"SQLITE_ERROR",
    r"SQLite error",
    r"SQLite3::SQLException",
    r"sqlite3\.OperationalError",
    r"near \".*\": syntax error",
    r"unrecognized token: \"",
    r"no such table",
    r"no such column",
]
_SQL_ERROR_COMPILED = [re.compile(p, re.I) for p in _SQL_ERROR_RX]

# Checked in order; the first engine with a matching substring wins.
_FINGERPRINTS = [
    ("mysql", ("mysql", "mariadb", "you have an error in your sql syntax")),
    ("postgres", ("postgresql", "pg_query", "pg_exec", "psql", "unterminated quoted string",
                  "syntax error at or near")),
    ("mssql", ("sql server", "sqlserver", "unclosed quotation mark", "incorrect syntax near",
               "odbc", "sqlexception", "ole db")),
    ("oracle", ("ora-", "oracle", "quoted string not properly terminated")),
    ("sqlite", ("sqlite", "no such table", "no such column", "unrecognized token")),
]

_TITLE_RX = re.compile(r"<title[^>]*>([^<]*)</title>", re.I)


def body_to_text(body: Any) -> str:
    """Strings pass through, structured bodies are canonically serialized."""
    if isinstance(body, str):
        return body
    if isinstance(body, bytes):
        return body.decode("utf-8", errors="replace")
    if isinstance(body, (dict, list)):
        return json.dumps(body, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    if body is None:
        return ""
    return str(body)


def response_text(response: httpx.Response) -> str:
    """Comparable text of an HTTP response; JSON bodies are re-serialized canonically."""
    ctype = response.headers.get("content-type", "").lower()
    if "json" in ctype:
        try:
            return body_to_text(response.json())
        except ValueError:
            pass
    return response.text or ""


def extract_title(html: str) -> str:
    m = _TITLE_RX.search(html or "")
    return m.group(1).strip() if m else ""


def clip(text: str, max_length: int = 200) -> str:
    return text[:max_length] + "..." if len(text) > max_length else text


def sql_error_match(text: str) -> str:
    """The first engine error signature found in text, or ""."""
    if not text:
        return ""
    for rx in _SQL_ERROR_COMPILED:
        m = rx.search(text)
        if m:
            return m.group(0)
    return ""


def has_sql_error(text: str) -> bool:
    return bool(sql_error_match(text))


def detect_db_fingerprint(text: str) -> str:
    """Return mysql | postgres | mssql | oracle | sqlite | unknown."""
    lower = (text or "").lower()
    for engine, needles in _FINGERPRINTS:
        if any(n in lower for n in needles):
            return engine
    if re.search(r"near \".*\": syntax error", text or "", re.I):
        return "sqlite"
    return "unknown"


def similarity_signal(a: str, b: str) -> float:
    """
    Positional character-match ratio: characters of the shorter string that equal
    the character at the same index of the longer one, over the longer length.

    This is not an edit distance. One inserted character shifts everything after
    it, so the score drops sharply on misaligned content.
    """
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    shorter, longer = (a, b) if len(a) < len(b) else (b, a)
    matches = sum(1 for i, ch in enumerate(shorter) if ch == longer[i])
    return matches / len(longer)


def length_delta(a: str, b: str, reference: str) -> float:
    """Absolute length difference of a and b relative to the reference length."""
    return abs(len(a) - len(b)) / max(1, len(reference))
