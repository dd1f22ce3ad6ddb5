"""Shell command classification for aggregate reporting."""
from __future__ import annotations

import re
from typing import Any

DEFAULT_CATEGORY = "shell"

# Ordered (category, leading-token patterns). The first rule whose pattern
# matches the start of the command wins, so more specific rules come first.
_COMMAND_CATEGORY_RULES: list[tuple[str, tuple[str, ...]]] = [
    # version control
    ("git", ("git",)),
    # package managers
    ("npm", ("npm", "npx", "yarn", "pnpm", r"bun\s+(?:install|add|remove|update|link|i|pm)")),
    ("python", ("pip", "pip3", "poetry", "pipenv", "uv")),
    ("php", ("composer",)),
    ("brew", ("brew",)),
    # language runtimes
    ("nodejs", ("node", "deno", "bun")),
    ("python", ("python", "python3")),
    ("php", ("php", "artisan")),
    ("ruby", ("ruby",)),
    # build tools and bundlers
    ("build", ("make", "cmake", "ninja")),
    ("bundler", ("webpack", "vite", "rollup", "esbuild")),
    # test runners
    ("test", ("jest", "vitest", "pytest", "phpunit", r"cargo\s+test", r"go\s+test")),
    # filesystem, search and viewing
    ("filesystem", ("find", "ls", "tree", "du", "df")),
    ("search", ("grep", "rg", "ag", "ack")),
    ("fileview", ("cat", "head", "tail", "less", "more")),
    # system
    ("process", ("ps", "top", "htop", "kill")),
    ("network", ("curl", "wget", "http")),
]


def _compile(patterns: tuple[str, ...]) -> re.Pattern[str]:
    return re.compile(r"^(?:" + "|".join(patterns) + r")(?:\s|$)")


_COMPILED_RULES: list[tuple[str, re.Pattern[str]]] = [
    (category, _compile(patterns)) for category, patterns in _COMMAND_CATEGORY_RULES
]


def categorize_command(command: Any) -> str:
    """Return the category of a shell command; never raises."""
    if not isinstance(command, str):
        return DEFAULT_CATEGORY
    text = command.strip()
    if not text:
        return DEFAULT_CATEGORY
    for category, pattern in _COMPILED_RULES:
        if pattern.match(text):
            return category
    return DEFAULT_CATEGORY


def known_categories() -> list[str]:
    seen: list[str] = []
    for category, _ in _COMMAND_CATEGORY_RULES:
        if category not in seen:
            seen.append(category)
    seen.append(DEFAULT_CATEGORY)
    return seen
