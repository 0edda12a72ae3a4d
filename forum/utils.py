"""Utility functions for common operations across the application."""

import re

USERNAME_PATTERN = re.compile(r"^[a-z0-9_.-]+$")


def normalize_email(email: str) -> str:
    """Convert email to lowercase and strip whitespace."""
    return email.strip().lower()


def normalize_name(name: str) -> str:
    """User names are unique case-insensitively, so they are stored lowercased."""
    return name.strip().lower()


def count_lines(text: str) -> int:
    """Number of newline-separated lines; a trailing newline starts a new line."""
    return len(text.replace("\r\n", "\n").split("\n"))


def comment_problem(content: str, max_chars: int, max_lines: int) -> str | None:
    """Return why a comment cannot be posted, or None when it is acceptable."""
    if not content or not content.strip():
        return "Comment cannot be blank"
    if len(content) > max_chars:
        return f"Comment cannot be longer than {max_chars} characters"
    if count_lines(content) > max_lines:
        return f"Comment cannot have more than {max_lines} lines"
    return None
