"""
Global symbol table of fully-qualified names.

All names are collected before any reference is resolved, so resolution
never depends on the order in which schema files were processed.

Scoping follows protobuf rules: a leading "." marks a fully-qualified name;
otherwise the name is looked up in the referencing package, then in each
enclosing package, and finally as written.

Example:
    >>> table = SymbolTable(["blog.Post", "iam.User"])
    >>> table.resolve("Post", "blog")
    'blog.Post'
    >>> table.resolve("iam.User", "blog")
    'iam.User'
"""

from __future__ import annotations

from typing import Iterable, Iterator


def _candidates(name: str, package: str) -> Iterator[str]:
    if name.startswith("."):
        yield name[1:]
        return
    parts = package.split(".") if package else []
    while parts:
        yield ".".join(parts + [name])
        parts.pop()
    yield name


class SymbolTable:
    """Set of fully-qualified names with scoped lookup."""

    def __init__(self, names: Iterable[str] = ()) -> None:
        self._names: set[str] = set(names)

    def add(self, qualified_name: str) -> None:
        self._names.add(qualified_name)

    def __contains__(self, qualified_name: object) -> bool:
        return qualified_name in self._names

    def __len__(self) -> int:
        return len(self._names)

    def resolve(self, name: str, package: str) -> str | None:
        """Resolve a possibly relative name from within ``package``.

        Returns:
            The fully-qualified name, or None if nothing matches
        """
        if not name:
            return None
        for candidate in _candidates(name, package):
            if candidate in self._names:
                return candidate
        return None
