"""YAML persistence for rules and lookup lists."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel

from ..exceptions import ConfigurationError
from .models import LookupList, Rule, parse_lists, parse_rules


class _YamlStore:
    _key = ""

    def __init__(self, path: str) -> None:
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    def _load_raw(self) -> list[dict[str, Any]]:
        if not self._path.exists():
            return []
        try:
            data = yaml.safe_load(self._path.read_text())
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Cannot parse {self._path}: {e}") from e
        if not data:
            return []
        if not isinstance(data, dict):
            raise ConfigurationError(f"{self._path} must contain a mapping")
        if self._key not in data:
            return []
        entries = data[self._key] or []
        if not isinstance(entries, list):
            raise ConfigurationError(f"'{self._key}' in {self._path} must be a list")
        return entries

    def _save_raw(self, items: list[BaseModel]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = {self._key: [i.model_dump(mode="json", exclude_none=True) for i in items]}
        self._path.write_text(yaml.dump(data, default_flow_style=False, sort_keys=False))


class RulesStore(_YamlStore):
    """Load and save rules to a YAML file (``rules:`` key)."""

    _key = "rules"

    def load(self) -> list[Rule]:
        return parse_rules(self._load_raw())

    def save(self, rules: list[Rule]) -> None:
        self._save_raw(rules)


class ListsStore(_YamlStore):
    """Load and save lookup lists to a YAML file (``lists:`` key)."""

    _key = "lists"

    def load(self) -> list[LookupList]:
        return parse_lists(self._load_raw())

    def save(self, lists: list[LookupList]) -> None:
        self._save_raw(lists)
