# sqlrule-adapter

A storage adapter that keeps access-control policy rules in an SQL table,
built on SQLAlchemy 2.

Each rule is one row of a table named `casbin_rule` by default. The table has
an integer `id`, a policy type column `ptype` and up to eight value columns
`v0` … `v7`. The table and a unique index over `ptype, v0 … v7` (named
`idx_<table>`) are created on first use if they do not exist.

## Installation

```
pip install sqlrule-adapter
```

The package depends only on SQLAlchemy. SQLite works out of the box; the
other drivers need their database library installed separately:

| driver name | SQLAlchemy dialect   | database library |
|-------------|----------------------|------------------|
| `sqlite3`   | `sqlite`             | built in         |
| `mysql`     | `mysql+pymysql`      | PyMySQL          |
| `postgres`  | `postgresql`         | psycopg2         |
| `sqlserver` | `mssql+pymssql`      | pymssql          |

## Modules

- `sqlrule_adapter.adapter` – `Adapter`, `AdapterError`, `DbPool`,
  `new_filtered_adapter`, `init_db_resolver`, `new_adapter_by_mul_db`.
- `sqlrule_adapter.model` – `Model`, `Assertion`, `load_policy_array`.
- `sqlrule_adapter.rules` – `CasbinRule`, `Filter`, `rule_line`,
  `filter_line`, `check_query_field`.
- `sqlrule_adapter.drivers` – `database_url`, `open_engine`.

## Opening an adapter

```python
from sqlrule_adapter.adapter import Adapter

# Extra positional arguments select the database name, the table name and
# whether the database named in the data source already exists:
#   Adapter(driver, dsn)
#   Adapter(driver, dsn, database_name)
#   Adapter(driver, dsn, db_specified)
#   Adapter(driver, dsn, database_name, table_name)
#   Adapter(driver, dsn, database_name, db_specified)
#   Adapter(driver, dsn, database_name, table_name, db_specified)
adapter = Adapter("sqlite3", "policy.db")
```

Without a database name the adapter uses `casbin`; without a table name it
uses `casbin_rule`. Any other combination of arguments raises `AdapterError`
(`"wrong format"`, or `"too many parameters"` for more than three).

When `db_specified` is false, the adapter first runs `CREATE DATABASE` on the
server (`CREATE DATABASE IF NOT EXISTS` for MySQL and SQL Server; for
PostgreSQL an "already exists" error is ignored; SQLite needs no such step),
then connects to that database:

- `postgres`: `" dbname=<database_name>"` is appended to the data source name;
- `mysql` and `sqlserver`: the database name is appended directly;
- `sqlite3`: the data source name is used as it is.

Data source names are given in each driver's native form, for example:

```python
Adapter("mysql", "user:password@tcp(localhost:3306)/")
Adapter("postgres", "host=localhost port=5432 user=user password=password sslmode=disable")
Adapter("sqlite3", ":memory:")
```

`sqlrule_adapter.drivers.database_url(driver_name, dsn)` shows the SQLAlchemy
URL a data source name turns into, and `open_engine(driver_name, dsn)` creates
the engine (an in-memory SQLite database shares a single connection). An
unknown driver name raises `ValueError("database dialect is not supported")`.

### Using an existing engine

```python
from sqlalchemy import create_engine
from sqlrule_adapter.adapter import Adapter

engine = create_engine("sqlite://")
adapter = Adapter.from_engine(engine, "cms", "rules", True)
print(adapter.full_table_name())   # cms_rules
```

The table is named `<prefix>_<table_name>`, or just `<table_name>` when the
prefix is empty; an empty table name means `casbin_rule`. Passing
`auto_migrate=False` skips creating the table and index.

Call `adapter.close()` when done, or use the adapter as a context manager:

```python
with Adapter("sqlite3", "policy.db") as adapter:
    ...
```

## Loading and saving policy

```python
from sqlrule_adapter.model import Model

model = Model()
model.add_def("p", "p")
model.add_def("g", "g")

adapter.add_policy("p", "p", ["alice", "data1", "read"])
adapter.add_policies("p", "p", [["bob", "data2", "write"], ["carol", "data1", "read"]])
adapter.add_policy("g", "g", ["alice", "admin"])

adapter.load_policy(model)
print(model.get_policy("p", "p"))
# [['alice', 'data1', 'read'], ['bob', 'data2', 'write'], ['carol', 'data1', 'read']]

adapter.save_policy(model)   # replaces the table contents with the model's rules
```

`load_policy` reads rows in `id` order, drops trailing empty values and adds
each line to the model, skipping rules the model already holds. The section
of a line is the first letter of its policy type, so that type must have been
declared with `Model.add_def`. `save_policy` empties the table and writes the
rules of the model's `"p"` and `"g"` sections in batches. Rules longer than
eight values are cut to eight.

## Changing rules

```python
adapter.remove_policy("p", "p", ["bob", "data2", "write"])
adapter.update_policy("p", "p", ["alice", "data1", "read"], ["alice", "data1", "write"])

# Remove every "p" rule whose v1 is "data1" (field index 1, then the values).
adapter.remove_filtered_policy("p", "p", 1, "data1")

# A field index of -1 removes every rule of the type.
adapter.remove_filtered_policy("p", "p", -1)

# Replace the rules matching a filter; the removed rules are returned,
# policy type first.
removed = adapter.update_filtered_policies(
    "p", "p", [["dave", "data3", "read"]], 0, "alice"
)
```

Removals and updates match on the policy type and on every non-empty value
of the given rule, so empty strings act as wildcards. An update writes only
the new rule's non-empty values. `remove_policies` and `update_policies` run
in a single transaction; `update_policies` raises `ValueError` if the old and
new lists differ in length. `remove_filtered_policy` raises `ValueError` when
all the given values are empty strings.

## Filtered loading

```python
from sqlrule_adapter.adapter import new_filtered_adapter
from sqlrule_adapter.model import Model
from sqlrule_adapter.rules import Filter

adapter = new_filtered_adapter("sqlite3", "policy.db")
model = Model()
model.add_def("p", "p")
adapter.load_filtered_policy(model, Filter(ptype=["p"], v0=["alice", "bob"]))
print(adapter.is_filtered())   # True
```

Each non-empty list of a `Filter` restricts its column to those values.
Anything other than a `Filter` raises `AdapterError("invalid filter type")`.

## Several databases

```python
from sqlrule_adapter.adapter import init_db_resolver, new_adapter_by_mul_db

pool = init_db_resolver(["sqlite:///one.db", "sqlite:///two.db"], ["first", "second"])
first = new_adapter_by_mul_db(pool, "first", "", "casbin_rule1")
second = new_adapter_by_mul_db(pool, "second", "", "casbin_rule2")
```

`init_db_resolver` accepts SQLAlchemy URLs or ready engines and names them in
order; `DbPool.switch(name)` returns the named engine, or the first one for an
unknown name. An empty list raises `ValueError`.

## What this package does not do

It stores and retrieves policy rules only. `Model` is a plain container of
rules per section and policy type: it does not read model configuration
files, match requests or decide whether access is allowed. There is no
command-line tool.

## Running the tests

```
pip install "sqlrule-adapter[test]"
pytest
```