"""Lookup registry — named allow/deny/general lists with membership queries."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from ..exceptions import ConfigurationError
from .models import LookupList, normalize_item

logger = logging.getLogger("vms-rules")


@dataclass(frozen=True)
class _RegistrySnapshot:
    lists: Mapping[str, LookupList] = field(
        default_factory=lambda: MappingProxyType({})
    )
    # Unknown list names already warned about while this snapshot is live
    warned: set[str] = field(default_factory=set)


class LookupRegistry:
    """Holds the current set of lookup lists.

    Readers grab ``self._snapshot`` once per query, so a concurrent
    ``reload`` is seen either fully or not at all.
    """

    def __init__(self, lists: Iterable[LookupList] = ()) -> None:
        self._snapshot = _RegistrySnapshot()
        self._write_lock = threading.Lock()
        lists = list(lists)
        if lists:
            self.reload(lists)

    def reload(self, lists: Iterable[LookupList]) -> None:
        """Replace every list at once. Duplicate names reject the whole set."""
        built: dict[str, LookupList] = {}
        for lookup in lists:
            key = normalize_item(lookup.name)
            if key in built:
                raise ConfigurationError(f"Duplicate lookup list name: {lookup.name!r}")
            built[key] = lookup
        with self._write_lock:
            self._snapshot = _RegistrySnapshot(lists=MappingProxyType(built))
        logger.info(f"Lookup registry reloaded: {len(built)} list(s)")

    def membership(self, list_name: str, item: str) -> bool:
        """True when ``item`` is in ``list_name`` (case-insensitive).

        An unknown list answers False and logs a configuration warning.
        """
        snapshot = self._snapshot
        key = normalize_item(list_name)
        lookup = snapshot.lists.get(key)
        if lookup is None:
            if key not in snapshot.warned:
                snapshot.warned.add(key)
                logger.warning(f"Lookup list {list_name!r} is not loaded")
            return False
        return normalize_item(item) in lookup.items

    def has_list(self, list_name: str) -> bool:
        return normalize_item(list_name) in self._snapshot.lists

    def get(self, list_name: str) -> LookupList | None:
        return self._snapshot.lists.get(normalize_item(list_name))

    def names(self) -> list[str]:
        return [lookup.name for lookup in self._snapshot.lists.values()]
