"""Selection handles and the provider capability interface.

A provider turns a file's current bytes into ``Handle`` objects. Handles are
ephemeral: they are recomputed on every read and never persisted.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from editplane.changeset.models import Span
from editplane.core.errors import NoProviderError
from editplane.core.hashing import compute_identity, hash_text


@dataclass(frozen=True, slots=True)
class Handle:
    """A selected source region."""

    file: Path
    span: Span
    kind: str
    name: str | None
    text: str
    identity: str = field(default="")
    expected_old_hash: str = field(default="")

    @classmethod
    def from_parts(
        cls, file: Path, start: int, end: int, kind: str, name: str | None, text: str
    ) -> Handle:
        return cls(
            file=file,
            span=Span(start=start, end=end),
            kind=kind,
            name=name,
            text=text,
            identity=compute_identity(kind, name, text),
            expected_old_hash=hash_text(text),
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "file": str(self.file),
            "span": {"start": self.span.start, "end": self.span.end},
            "kind": self.kind,
            "name": self.name,
            "identity": self.identity,
            "expected_old_hash": self.expected_old_hash,
            "text": self.text,
        }


class StructureProvider(ABC):
    """Capability interface shared by every language provider."""

    name: str

    @abstractmethod
    def supported_extensions(self) -> tuple[str, ...]:
        """Extensions (without dot, lowercase) this provider claims."""

    def can_handle(self, path: Path) -> bool:
        return path.suffix.lower().lstrip(".") in self.supported_extensions()

    @abstractmethod
    def select(self, path: Path, source: bytes) -> list[Handle]:
        """Return every selectable handle in ``source``."""


def normalize_bare_cr(source: bytes) -> bytes:
    """Turn lone ``\\r`` into ``\\n`` for parsers; length is unchanged."""
    if b"\r" not in source:
        return source
    buf = bytearray(source)
    last = len(buf) - 1
    for index, byte in enumerate(source):
        if byte == 0x0D and (index == last or source[index + 1] != 0x0A):
            buf[index] = 0x0A
    return bytes(buf)


class ProviderRegistry:
    """Ordered provider list; the first provider that claims a path wins."""

    def __init__(self, providers: Sequence[StructureProvider]) -> None:
        self._providers = list(providers)

    @classmethod
    def default(cls, *, include_fallback: bool = True) -> ProviderRegistry:
        from editplane.providers.fallback import FallbackProvider
        from editplane.providers.treesitter import tree_sitter_providers

        providers: list[StructureProvider] = list(tree_sitter_providers())
        if include_fallback:
            providers.append(FallbackProvider())
        return cls(providers)

    @property
    def providers(self) -> list[StructureProvider]:
        return list(self._providers)

    def supported_extensions(self) -> list[str]:
        return sorted({ext for p in self._providers for ext in p.supported_extensions()})

    def provider_for(self, path: Path) -> StructureProvider:
        for provider in self._providers:
            if provider.can_handle(path):
                return provider
        raise NoProviderError.for_extension(
            path.suffix.lstrip(".") or path.name, self.supported_extensions()
        )

    def select(self, path: Path, source: bytes) -> list[Handle]:
        return self.provider_for(path).select(path, source)
