"""Policy rule rows and the filters used to select them."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

COLUMNS = ("ptype", "v0", "v1", "v2", "v3", "v4", "v5", "v6", "v7")
VALUE_COLUMNS = COLUMNS[1:]

EMPTY_FIELDS_MESSAGE = 'the query field cannot all be empty string (""), please check'


@dataclass
class CasbinRule:
    """One stored policy line: a policy type and up to eight values."""

    ptype: str = ""
    v0: str = ""
    v1: str = ""
    v2: str = ""
    v3: str = ""
    v4: str = ""
    v5: str = ""
    v6: str = ""
    v7: str = ""
    id: int | None = None

    def values(self) -> list[str]:
        """All columns in storage order, ptype first."""
        return [getattr(self, column) for column in COLUMNS]

    def to_policy(self) -> list[str]:
        """The non-empty columns, ptype included."""
        return [value for value in self.values() if value]

    def to_line(self) -> list[str]:
        """The columns with trailing empty values removed."""
        values = self.values()
        while values and values[-1] == "":
            values.pop()
        return values

    def where_clause(self) -> tuple[str, list[str]]:
        """A parameterised condition matching ptype and every non-empty value."""
        parts = ["ptype = ?"]
        args = [self.ptype]
        for column in VALUE_COLUMNS:
            value = getattr(self, column)
            if value:
                parts.append(f"{column} = ?")
                args.append(value)
        return " and ".join(parts), args


@dataclass
class Filter:
    """Allowed values per column; an empty list leaves that column unrestricted."""

    ptype: list[str] = field(default_factory=list)
    v0: list[str] = field(default_factory=list)
    v1: list[str] = field(default_factory=list)
    v2: list[str] = field(default_factory=list)
    v3: list[str] = field(default_factory=list)
    v4: list[str] = field(default_factory=list)
    v5: list[str] = field(default_factory=list)
    v6: list[str] = field(default_factory=list)
    v7: list[str] = field(default_factory=list)

    def conditions(self) -> list[tuple[str, list[str]]]:
        """Pairs of column name and allowed values, for restricted columns only."""
        return [
            (column, list(getattr(self, column)))
            for column in COLUMNS
            if getattr(self, column)
        ]


def rule_line(ptype: str, rule: Sequence[str]) -> CasbinRule:
    """Build a row from a policy type and its values; values past the eighth are dropped."""
    return CasbinRule(ptype=ptype, **dict(zip(VALUE_COLUMNS, rule)))


def filter_line(ptype: str, field_index: int, field_values: Sequence[str]) -> CasbinRule:
    """Build a row whose values start at ``field_index``, as used for filtered matching."""
    end = field_index + len(field_values)
    values = {
        column: field_values[position - field_index]
        for position, column in enumerate(VALUE_COLUMNS)
        if field_index <= position < end
    }
    return CasbinRule(ptype=ptype, **values)


def check_query_field(field_values: Iterable[str]) -> None:
    """Raise ValueError unless at least one value is non-empty."""
    if not any(value != "" for value in field_values):
        raise ValueError(EMPTY_FIELDS_MESSAGE)