"""
Module availability map — installed / not installed per PowerShell module.

Keys are case-insensitive (PowerShell module names are), but the
spelling first seen is preserved for display.  The map is read-only;
``with_installed`` returns an updated copy.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping


class ModuleAvailability(Mapping[str, bool]):
    """Read-only, case-insensitive ``{module: installed}`` mapping."""

    __slots__ = ("_entries",)

    def __init__(self, entries: Mapping[str, bool] | Iterable[tuple[str, bool]] = ()):
        items = entries.items() if isinstance(entries, Mapping) else entries
        store: dict[str, tuple[str, bool]] = {}
        for name, installed in items:
            key = name.casefold()
            display = store[key][0] if key in store else name
            store[key] = (display, bool(installed))
        self._entries = store

    def __getitem__(self, name: str) -> bool:
        return self._entries[name.casefold()][1]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.casefold() in self._entries

    def __iter__(self) -> Iterator[str]:
        return (display for display, _ in self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"ModuleAvailability({self.to_dict()!r})"

    @property
    def installed(self) -> list[str]:
        return [name for name, ok in self.items() if ok]

    @property
    def missing(self) -> list[str]:
        return [name for name, ok in self.items() if not ok]

    @property
    def all_installed(self) -> bool:
        return not self.missing

    def is_installed(self, name: str) -> bool:
        """Whether *name* is known and installed.  Unknown modules are False."""
        entry = self._entries.get(name.casefold())
        return bool(entry and entry[1])

    def with_installed(self, names: Iterable[str]) -> ModuleAvailability:
        """Return a copy with *names* marked installed."""
        merged = dict(self.items())
        for name in names:
            key = name.casefold()
            display = self._entries[key][0] if key in self._entries else name
            merged[display] = True
        return ModuleAvailability(merged)

    def to_dict(self) -> dict[str, bool]:
        return dict(self.items())
