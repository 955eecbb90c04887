"""Shared utility functions for devassist-memory."""

import re
import sys
from datetime import datetime

LOG_PREFIX = "[devassist-memory]"


def log(message: str) -> None:
    """Write a diagnostic line to stderr (stdout carries the MCP transport)."""
    print(f"{LOG_PREFIX} {message}", file=sys.stderr)


def now_iso() -> str:
    """Get current timestamp as ISO string."""
    return datetime.now().isoformat()


def escape_filter_value(value: str) -> str:
    """Escape single quotes in filter values to prevent injection."""
    return value.replace("'", "''")


def normalize_git_url(url: str) -> str:
    """Normalize git URLs to canonical format: provider.com/owner/repo

    Examples:
        git@github.com:owner/devassist.git -> github.com/owner/devassist
        https://github.com/owner/devassist.git -> github.com/owner/devassist
    """
    url = url.removesuffix(".git")

    ssh_match = re.match(r"git@([^:]+):(.+)", url)
    if ssh_match:
        return f"{ssh_match.group(1)}/{ssh_match.group(2)}"

    https_match = re.match(r"https?://(.+)", url)
    if https_match:
        return https_match.group(1)

    return url


def project_name_from_remote(url: str) -> str:
    """Derive a short project name from a git remote (last path segment)."""
    return normalize_git_url(url.strip()).rstrip("/").rsplit("/", 1)[-1]
