"""Human-readable, collision-free branch names derived from task text."""

from __future__ import annotations

import os
import re
from typing import Iterable

from manifold.git.exec import GitRunner, PathLike, git_exec
from manifold.utils.helpers import now_ms

MAX_SLUG_LENGTH = 50
MAX_BRANCH_LENGTH = 40
MAX_WORDS = 5
MAX_SUFFIX = 999

STOPWORDS = frozenset({
    "the", "a", "an", "in", "to", "for", "of", "on", "is", "it", "its",
    "with", "from", "by", "at", "as", "be", "or", "and", "but", "not",
    "this", "that", "all", "my", "our", "your", "do", "does", "did",
})

_TRANSLITERATE = str.maketrans({
    "æ": "ae", "ø": "o", "å": "a", "ä": "a", "ö": "o", "ü": "u", "é": "e",
})
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")
_NON_WORD_RE = re.compile(r"[^a-z0-9\s]")
_DASH_RUN_RE = re.compile(r"-+")
_TRAILING_PART_RE = re.compile(r"-[^-]*$")


def slugify(text: str, max_length: int = MAX_SLUG_LENGTH) -> str:
    slug = text.lower().translate(_TRANSLITERATE)
    slug = _NON_ALNUM_RE.sub("-", slug)
    slug = _DASH_RUN_RE.sub("-", slug).strip("-")
    return slug[:max_length].rstrip("-")


def repo_prefix(repo_path: PathLike) -> str:
    """``/code/MyRepo`` -> ``myrepo/``."""
    return os.path.basename(os.path.normpath(str(repo_path))).lower() + "/"


def derive_branch_name(description: str, repo_name: str) -> str:
    """Build ``<repo>/<word-word-...>`` from up to five meaningful words.

    Returns ``""`` when the description has no usable words or the repo
    name alone leaves no room for them. The whole name stays within
    MAX_BRANCH_LENGTH, cut back to a word boundary.
    """
    prefix = repo_name.lower() + "/"
    cleaned = _NON_WORD_RE.sub("", description.lower().translate(_TRANSLITERATE))
    words = [w for w in cleaned.split() if w not in STOPWORDS][:MAX_WORDS]
    if not words:
        return ""

    slug = "-".join(words)
    max_slug_len = MAX_BRANCH_LENGTH - len(prefix)
    if max_slug_len <= 0:
        return ""
    if len(slug) > max_slug_len:
        slug = _TRAILING_PART_RE.sub("", slug[:max_slug_len])
    if not slug:
        return ""
    return prefix + slug


async def get_existing_branches(repo_path: PathLike, git: GitRunner = git_exec) -> set[str]:
    stdout = await git(["branch", "-a", "--format=%(refname:short)"], repo_path)
    return {line.strip() for line in stdout.split("\n") if line.strip()}


def _taken_names(existing: Iterable[str]) -> set[str]:
    taken = set(existing)
    for name in list(taken):
        if name.startswith("origin/"):
            taken.add(name[len("origin/"):])
    return taken


async def generate_branch_name(
    repo_path: PathLike,
    task_description: str,
    existing: Iterable[str] | None = None,
    git: GitRunner = git_exec,
) -> str:
    """Return a branch name not present locally or on the remote.

    Collisions get ``-2`` .. ``-999``; past that, and for descriptions
    without usable words, the name falls back to ``<prefix>task-<ms>``.
    """
    prefix = repo_prefix(repo_path)
    repo_name = prefix[:-1]
    base = derive_branch_name(task_description, repo_name)
    if not base:
        return f"{prefix}task-{now_ms()}"

    if existing is None:
        existing = await get_existing_branches(repo_path, git)
    taken = _taken_names(existing)

    if base not in taken:
        return base
    for suffix in range(2, MAX_SUFFIX + 1):
        candidate = f"{base}-{suffix}"
        if candidate not in taken:
            return candidate
    return f"{prefix}task-{now_ms()}"
