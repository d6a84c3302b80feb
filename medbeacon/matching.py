"""Keyword matching used by every rule table lookup."""

from __future__ import annotations


def matches_keyword(text: str, keyword: str) -> bool:
    """Case-insensitive substring match of ``keyword`` inside ``text``.

    Free text such as "Hemophilia A (severe)" matches the keyword
    "hemophilia".  Synonyms and misspellings do not match.
    """
    if not text or not keyword:
        return False
    return keyword.lower() in text.lower()


def matches_all(text: str, keywords: tuple[str, ...] | list[str]) -> bool:
    return all(matches_keyword(text, kw) for kw in keywords)


def matches_any(text: str, keywords: tuple[str, ...] | list[str]) -> bool:
    return any(matches_keyword(text, kw) for kw in keywords)
