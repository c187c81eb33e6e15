"""Wordlist sources for the directory brute-force probe."""

from __future__ import annotations

from pathlib import Path

DEFAULT_WORDLIST: tuple[str, ...] = (
    "admin",
    "administrator",
    "login",
    "dashboard",
    "api",
    "api/v1",
    "backup",
    "backups",
    "old",
    "test",
    "dev",
    "staging",
    "config",
    "uploads",
    "files",
    "private",
    "server-status",
    "phpmyadmin",
    "wp-admin",
    "wp-login.php",
    "robots.txt",
    "sitemap.xml",
    ".git/HEAD",
    ".env",
    ".htaccess",
    ".DS_Store",
    "backup.zip",
    "db.sql",
    "console",
    "actuator",
    "actuator/health",
    "swagger-ui.html",
    "graphql",
    "debug",
    "cgi-bin/",
)


def normalize(entries: list[str] | tuple[str, ...]) -> list[str]:
    """Strip whitespace, comments, leading slashes and duplicates; keep order."""
    seen: dict[str, None] = {}
    for entry in entries:
        entry = entry.strip()
        if not entry or entry.startswith("#"):
            continue
        seen.setdefault(entry.lstrip("/"), None)
    return [e for e in seen if e]


def load_wordlist(path: Path | str) -> list[str]:
    """Read one path segment per line from ``path``.

    Raises:
        FileNotFoundError: If the file does not exist
    """
    text = Path(path).read_text(encoding="utf-8", errors="replace")
    return normalize(text.splitlines())
