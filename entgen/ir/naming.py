"""
The single naming convention applied by the compiler.

Storage identifiers are lower snake_case, API identifiers are camelCase,
type names are PascalCase.
"""

from __future__ import annotations

import re

_WORD_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])|([A-Z])([A-Z][a-z])")


def _words(name: str) -> list[str]:
    spaced = _WORD_BOUNDARY.sub(lambda m: " ".join(g for g in m.groups() if g), name)
    return [w for w in re.split(r"[\s_\-\.]+", spaced) if w]


def to_snake_case(name: str) -> str:
    """UserProfile -> user_profile, HTTPServer -> http_server."""
    return "_".join(w.lower() for w in _words(name))


def to_pascal_case(name: str) -> str:
    """user_profile -> UserProfile."""
    return "".join(w[:1].upper() + w[1:].lower() for w in _words(name))


def to_camel_case(name: str) -> str:
    """user_profile -> userProfile."""
    pascal = to_pascal_case(name)
    return pascal[:1].lower() + pascal[1:]


def pluralize(word: str) -> str:
    """English plural for generated relation names (post -> posts)."""
    if not word:
        return word
    if re.search(r"(s|x|z|ch|sh)$", word):
        return word + "es"
    if re.search(r"[^aeiou]y$", word):
        return word[:-1] + "ies"
    return word + "s"


def singularize(word: str) -> str:
    """Inverse of pluralize for the suffixes it produces."""
    if word.endswith("ies") and len(word) > 3:
        return word[:-3] + "y"
    if re.search(r"(s|x|z|ch|sh)es$", word):
        return word[:-2]
    if word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word
