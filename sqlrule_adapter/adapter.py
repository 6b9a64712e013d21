"""Policy storage in a SQL database table through SQLAlchemy."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import (
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    and_,
    create_engine,
    delete,
    insert,
    inspect,
    select,
    text,
    update,
)
from sqlalchemy.engine import URL, Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from .drivers import open_engine
from .model import Model, load_policy_array
from .rules import (
    COLUMNS,
    VALUE_COLUMNS,
    CasbinRule,
    Filter,
    check_query_field,
    filter_line,
    rule_line,
)

DEFAULT_DATABASE_NAME = "casbin"
DEFAULT_TABLE_NAME = "casbin_rule"
FLUSH_EVERY = 1000

WRONG_FORMAT_MESSAGE = "wrong format"
TOO_MANY_MESSAGE = "too many parameters"
INVALID_FILTER_MESSAGE = "invalid filter type"

_DUPLICATE_DATABASE = "42P04"


class AdapterError(Exception):
    """Raised when the adapter is given arguments it cannot use."""


def _rule_table(full_name: str) -> Table:
    schema, _, name = full_name.rpartition(".")
    long_values = ("v0", "v1", "v2", "v3", "v4", "v5")
    return Table(
        name,
        MetaData(),
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("ptype", String(100)),
        *(Column(column, String(100)) for column in long_values),
        Column("v6", String(25)),
        Column("v7", String(25)),
        schema=schema or None,
    )


def _row_values(rule: CasbinRule) -> dict[str, str]:
    return {column: getattr(rule, column) for column in COLUMNS}


def _from_row(row: Mapping[str, Any]) -> CasbinRule:
    return CasbinRule(id=row["id"], **{column: row[column] or "" for column in COLUMNS})


def _matches(table: Table, rule: CasbinRule):
    conditions = [table.c[column] == value for column in VALUE_COLUMNS if (value := getattr(rule, column))]
    return and_(table.c.ptype == rule.ptype, *conditions)


class Adapter:
    """Loads and saves access-control policy rules in a database table."""

    def __init__(self, driver_name: str, data_source_name: str, *args: Any) -> None:
        """Open a database by driver name; extra arguments are
        ``database_name``, ``[database_name,] table_name`` and/or ``db_specified``."""
        self._configure(driver_name, data_source_name)
        self._parse_args(args)
        self.open()

    def _configure(self, driver_name: str, data_source_name: str) -> None:
        self.driver_name = driver_name
        self.data_source_name = data_source_name
        self.database_name = DEFAULT_DATABASE_NAME
        self.table_prefix = ""
        self.table_name = DEFAULT_TABLE_NAME
        self.db_specified = False
        self._filtered = False
        self._engine: Engine | None = None
        self._table: Table | None = None

    def _parse_args(self, args: Sequence[Any]) -> None:
        if len(args) == 1:
            (first,) = args
            if isinstance(first, bool):
                self.db_specified = first
            elif isinstance(first, str):
                self.database_name = first
            else:
                raise AdapterError(WRONG_FORMAT_MESSAGE)
        elif len(args) == 2:
            first, second = args
            if not isinstance(second, (bool, str)) or not isinstance(first, str):
                raise AdapterError(WRONG_FORMAT_MESSAGE)
            self.database_name = first
            if isinstance(second, bool):
                self.db_specified = second
            else:
                self.table_name = second
        elif len(args) == 3:
            first, second, third = args
            if not (isinstance(third, bool) and isinstance(first, str) and isinstance(second, str)):
                raise AdapterError(WRONG_FORMAT_MESSAGE)
            self.db_specified = third
            self.database_name = first
            self.table_name = second
        elif args:
            raise AdapterError(TOO_MANY_MESSAGE)

    @classmethod
    def from_engine(
        cls,
        engine: Engine,
        prefix: str = "",
        table_name: str = DEFAULT_TABLE_NAME,
        auto_migrate: bool = True,
    ) -> Adapter:
        """Use an existing engine; the table is named ``prefix_table_name``."""
        adapter = cls.__new__(cls)
        adapter._configure("", "")
        adapter.database_name = ""
        adapter.table_prefix = prefix
        adapter.table_name = table_name or DEFAULT_TABLE_NAME
        adapter._bind(engine, auto_migrate)
        return adapter

    def __enter__(self) -> Adapter:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _create_database(self) -> None:
        engine = open_engine(self.driver_name, self.data_source_name)
        try:
            if self.driver_name == "sqlite3":
                return
            if self.driver_name == "postgres":
                statement = f"CREATE DATABASE {self.database_name}"
            else:
                statement = f"CREATE DATABASE IF NOT EXISTS {self.database_name}"
            try:
                with engine.connect() as conn:
                    conn = conn.execution_options(isolation_level="AUTOCOMMIT")
                    conn.execute(text(statement))
            except SQLAlchemyError as exc:
                code = getattr(getattr(exc, "orig", None), "pgcode", None)
                if self.driver_name == "postgres" and (
                    code == _DUPLICATE_DATABASE or _DUPLICATE_DATABASE in str(exc)
                ):
                    return
                raise
        finally:
            engine.dispose()

    def open(self) -> None:
        """Connect to the database, creating it and the rule table when needed."""
        if self.db_specified:
            dsn = self.data_source_name
        else:
            self._create_database()
            if self.driver_name == "postgres":
                dsn = f"{self.data_source_name} dbname={self.database_name}"
            elif self.driver_name == "sqlite3":
                dsn = self.data_source_name
            else:
                dsn = self.data_source_name + self.database_name
        self._bind(open_engine(self.driver_name, dsn), auto_migrate=True)

    def _bind(self, engine: Engine, auto_migrate: bool) -> None:
        self._engine = engine
        self._table = _rule_table(self.full_table_name())
        if auto_migrate:
            self._create_table()

    def _create_table(self) -> None:
        table = self._table
        index_name = ("idx_" + self.full_table_name()).replace(".", "_")
        with self._engine.begin() as conn:
            table.create(conn, checkfirst=True)
            existing = {index["name"] for index in inspect(conn).get_indexes(table.name, schema=table.schema)}
            if index_name not in existing:
                Index(index_name, *(table.c[column] for column in COLUMNS), unique=True).create(conn)

    def close(self) -> None:
        """Release the engine's connections."""
        if self._engine is not None:
            self._engine.dispose()

    def full_table_name(self) -> str:
        """The table name with its prefix, if any."""
        if self.table_prefix:
            return f"{self.table_prefix}_{self.table_name}"
        return self.table_name

    def is_filtered(self) -> bool:
        """Whether the loaded policy has been filtered."""
        return self._filtered

    def _load_rows(self, model: Model, query) -> None:
        with self._engine.connect() as conn:
            rows = [_from_row(row) for row in conn.execute(query).mappings()]
        for rule in rows:
            load_policy_array(rule.to_line(), model)

    def load_policy(self, model: Model) -> None:
        """Load every stored rule into the model, in insertion order."""
        self._load_rows(model, select(self._table).order_by(self._table.c.id))

    def load_filtered_policy(self, model: Model, filter: Filter) -> None:
        """Load only the rules whose columns match the filter."""
        if not isinstance(filter, Filter):
            raise AdapterError(INVALID_FILTER_MESSAGE)
        table = self._table
        query = select(table)
        for column, values in filter.conditions():
            query = query.where(table.c[column].in_(values))
        self._load_rows(model, query.order_by(table.c.id))
        self._filtered = True

    def _truncate(self, conn: Connection) -> None:
        if conn.dialect.name == "sqlite":
            conn.execute(delete(self._table))
        else:
            conn.execute(text(f"truncate table {self.full_table_name()}"))

    def save_policy(self, model: Model) -> None:
        """Replace the stored rules with the model's "p" and "g" rules."""
        table = self._table
        with self._engine.begin() as conn:
            self._truncate(conn)
            batch: list[dict[str, str]] = []
            for sec in ("p", "g"):
                for ptype, assertion in model.get(sec, {}).items():
                    for rule in assertion.policy:
                        batch.append(_row_values(rule_line(ptype, rule)))
                        if len(batch) > FLUSH_EVERY:
                            conn.execute(insert(table), batch)
                            batch = []
            if batch:
                conn.execute(insert(table), batch)

    def add_policy(self, sec: str, ptype: str, rule: Sequence[str]) -> None:
        """Store one rule."""
        with self._engine.begin() as conn:
            conn.execute(insert(self._table), _row_values(rule_line(ptype, rule)))

    def remove_policy(self, sec: str, ptype: str, rule: Sequence[str]) -> None:
        """Delete the rows matching a rule's non-empty values."""
        with self._engine.begin() as conn:
            conn.execute(delete(self._table).where(_matches(self._table, rule_line(ptype, rule))))

    def add_policies(self, sec: str, ptype: str, rules: Iterable[Sequence[str]]) -> None:
        """Store several rules at once."""
        rows = [_row_values(rule_line(ptype, rule)) for rule in rules]
        if not rows:
            return
        with self._engine.begin() as conn:
            conn.execute(insert(self._table), rows)

    def remove_policies(self, sec: str, ptype: str, rules: Iterable[Sequence[str]]) -> None:
        """Delete several rules in one transaction."""
        with self._engine.begin() as conn:
            for rule in rules:
                conn.execute(delete(self._table).where(_matches(self._table, rule_line(ptype, rule))))

    def remove_filtered_policy(self, sec: str, ptype: str, field_index: int, *field_values: str) -> None:
        """Delete rules whose values from ``field_index`` on match ``field_values``;
        an index of -1 deletes every rule of the type."""
        if field_index == -1:
            line = CasbinRule(ptype=ptype)
        else:
            check_query_field(field_values)
            line = filter_line(ptype, field_index, field_values)
        with self._engine.begin() as conn:
            conn.execute(delete(self._table).where(_matches(self._table, line)))

    def _update(self, conn: Connection, old: CasbinRule, new: CasbinRule) -> None:
        values = {column: value for column in COLUMNS if (value := getattr(new, column))}
        if values:
            conn.execute(update(self._table).where(_matches(self._table, old)).values(**values))

    def update_policy(self, sec: str, ptype: str, old_rule: Sequence[str], new_policy: Sequence[str]) -> None:
        """Overwrite the matching rows with the new rule's non-empty values."""
        with self._engine.begin() as conn:
            self._update(conn, rule_line(ptype, old_rule), rule_line(ptype, new_policy))

    def update_policies(
        self,
        sec: str,
        ptype: str,
        old_rules: Sequence[Sequence[str]],
        new_rules: Sequence[Sequence[str]],
    ) -> None:
        """Update rules pairwise in one transaction."""
        if len(old_rules) != len(new_rules):
            raise ValueError("old and new rules differ in number")
        with self._engine.begin() as conn:
            for old_rule, new_rule in zip(old_rules, new_rules):
                self._update(conn, rule_line(ptype, old_rule), rule_line(ptype, new_rule))

    def update_filtered_policies(
        self,
        sec: str,
        ptype: str,
        new_policies: Iterable[Sequence[str]],
        field_index: int,
        *field_values: str,
    ) -> list[list[str]]:
        """Replace the rules matching the filter with new ones; return the removed rules."""
        line = filter_line(ptype, field_index, field_values)
        new_rows = [_row_values(rule_line(ptype, rule)) for rule in new_policies]
        table = self._table
        condition = _matches(table, line)
        removed: list[CasbinRule] = []
        with self._engine.begin() as conn:
            for row in new_rows:
                found = conn.execute(select(table).where(condition).order_by(table.c.id)).mappings()
                removed = [_from_row(item) for item in found]
                conn.execute(delete(table).where(condition))
                conn.execute(insert(table), row)
        return [rule.to_policy() for rule in removed]


@dataclass
class DbPool:
    """Several databases, selected by name."""

    engines: list[Engine]
    names: dict[str, int] = field(default_factory=dict)
    current: int = 0

    def switch(self, db_name: str) -> Engine:
        """Select a database by name (the first one if unknown) and return its engine."""
        self.current = self.names.get(db_name, 0)
        return self.engines[self.current]


def new_filtered_adapter(driver_name: str, data_source_name: str, *args: Any) -> Adapter:
    """An adapter whose policy is meant to be loaded through a filter."""
    adapter = Adapter(driver_name, data_source_name, *args)
    adapter._filtered = True
    return adapter


def init_db_resolver(urls: Sequence[str | URL | Engine], db_names: Sequence[str]) -> DbPool:
    """Open one engine per URL and name them in order."""
    if not urls:
        raise ValueError("no databases given")
    engines = [url if isinstance(url, Engine) else create_engine(url) for url in urls]
    names = {name: position for position, name in enumerate(db_names)}
    return DbPool(engines=engines, names=names)


def new_adapter_by_mul_db(db_pool: DbPool, db_name: str, prefix: str, table_name: str) -> Adapter:
    """An adapter on the named database of a pool."""
    return Adapter.from_engine(db_pool.switch(db_name), prefix, table_name)