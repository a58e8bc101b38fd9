"""Deciding what unit of work a compiler invocation covers."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

from pygls import uris


@dataclass(frozen=True)
class InvocationScope:
    target: str
    is_directory: bool

    @property
    def cwd(self) -> Path:
        path = Path(self.target)
        return path if self.is_directory else path.parent


def uri_to_path(uri: str) -> Path:
    fs_path = uris.to_fs_path(uri)
    if fs_path is None:
        return Path(uri)
    return Path(fs_path)


def path_to_uri(path: str | Path) -> str:
    return uris.from_fs_path(str(path)) or str(path)


def _normalized(uri: str) -> str:
    return uri.rstrip("/")


def _is_under(uri: str, root_uri: str) -> bool:
    root = _normalized(root_uri)
    return uri == root or uri.startswith(root + "/")


def containing_root(uri: str, roots: Iterable[str]) -> str | None:
    """Return the most specific root whose URI prefixes ``uri``."""
    best: str | None = None
    for root in roots:
        if _is_under(uri, root):
            if best is None or len(_normalized(root)) > len(_normalized(best)):
                best = root
    return best


def scope_for(changed_uri: str, roots: Sequence[str]) -> InvocationScope:
    root = containing_root(changed_uri, roots)
    if root is not None:
        return InvocationScope(target=str(uri_to_path(root)), is_directory=True)
    return InvocationScope(target=str(uri_to_path(changed_uri)), is_directory=False)


def all_scopes(roots: Sequence[str], open_documents: Sequence[str]) -> list[InvocationScope]:
    scopes: list[InvocationScope] = []
    seen: set[InvocationScope] = set()
    for root in roots:
        scope = InvocationScope(target=str(uri_to_path(root)), is_directory=True)
        if scope not in seen:
            seen.add(scope)
            scopes.append(scope)
    for uri in open_documents:
        if containing_root(uri, roots) is not None:
            continue
        scope = InvocationScope(target=str(uri_to_path(uri)), is_directory=False)
        if scope not in seen:
            seen.add(scope)
            scopes.append(scope)
    return scopes
