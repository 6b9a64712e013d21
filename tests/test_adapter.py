import pytest
from sqlalchemy import create_engine, inspect
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool

from sqlrule_adapter.adapter import (
    Adapter,
    AdapterError,
    init_db_resolver,
    new_adapter_by_mul_db,
    new_filtered_adapter,
)
from sqlrule_adapter.model import Model
from sqlrule_adapter.rules import Filter


def fresh_model():
    model = Model()
    model.add_def("p", "p")
    model.add_def("g", "g")
    return model


def loaded(adapter):
    model = fresh_model()
    adapter.load_policy(model)
    return model


@pytest.fixture
def adapter():
    a = Adapter("sqlite3", ":memory:")
    yield a
    a.close()


@pytest.fixture
def seeded(adapter):
    adapter.add_policies(
        "p",
        "p",
        [["alice", "data1", "read"], ["alice", "data2", "write"], ["bob", "data1", "read"]],
    )
    return adapter


def test_save_and_load_round_trip(adapter):
    model = fresh_model()
    model.add_policy("p", "p", ["alice", "data1", "read"])
    model.add_policy("p", "p", ["bob", "data2", "write"])
    model.add_policy("g", "g", ["alice", "data2_admin"])
    adapter.save_policy(model)
    result = loaded(adapter)
    assert result.get_policy("p", "p") == [["alice", "data1", "read"], ["bob", "data2", "write"]]
    assert result.get_policy("g", "g") == [["alice", "data2_admin"]]


def test_inner_empty_values_are_kept(adapter):
    adapter.add_policy("p", "p", ["alice", "", "read"])
    assert loaded(adapter).get_policy("p", "p") == [["alice", "", "read"]]


def test_save_replaces_existing_rules(adapter):
    adapter.add_policy("p", "p", ["eve", "data9", "read"])
    model = fresh_model()
    model.add_policy("p", "p", ["alice", "data1", "read"])
    adapter.save_policy(model)
    assert loaded(adapter).get_policy("p", "p") == [["alice", "data1", "read"]]


def test_save_many_rules_in_batches(adapter):
    model = fresh_model()
    rules = [[f"user{n}", "data", "read"] for n in range(2500)]
    for rule in rules:
        model.add_policy("p", "p", rule)
    adapter.save_policy(model)
    assert loaded(adapter).get_policy("p", "p") == rules


def test_constructor_arguments():
    a = Adapter("sqlite3", ":memory:", "mydb", "rules")
    try:
        assert a.database_name == "mydb"
        assert a.table_name == "rules"
        assert a.full_table_name() == "rules"
        assert a.db_specified is False
    finally:
        a.close()
    b = Adapter("sqlite3", ":memory:", "mydb", "other", True)
    try:
        assert b.db_specified is True
        assert b.table_name == "other"
    finally:
        b.close()


@pytest.mark.parametrize(
    "args",
    [(5,), (1, "rules"), ("db", 3), (1, "rules", True), ("db", "rules", "yes")],
)
def test_constructor_wrong_format(args):
    with pytest.raises(AdapterError, match="wrong format"):
        Adapter("sqlite3", ":memory:", *args)


def test_constructor_too_many_parameters():
    with pytest.raises(AdapterError, match="too many parameters"):
        Adapter("sqlite3", ":memory:", "a", "b", True, False)


def test_unsupported_driver():
    with pytest.raises(ValueError, match="database dialect is not supported"):
        Adapter("oracle", "anything")


def test_duplicate_rule_rejected(adapter):
    adapter.add_policy("p", "p", ["alice", "data1", "read"])
    with pytest.raises(IntegrityError):
        adapter.add_policy("p", "p", ["alice", "data1", "read"])


def test_remove_policy(seeded):
    seeded.remove_policy("p", "p", ["alice", "data1", "read"])
    assert loaded(seeded).get_policy("p", "p") == [["alice", "data2", "write"], ["bob", "data1", "read"]]


def test_remove_policies(seeded):
    seeded.remove_policies("p", "p", [["alice", "data1", "read"], ["bob", "data1", "read"]])
    assert loaded(seeded).get_policy("p", "p") == [["alice", "data2", "write"]]


def test_remove_filtered_policy_first_field(seeded):
    seeded.remove_filtered_policy("p", "p", 0, "alice")
    assert loaded(seeded).get_policy("p", "p") == [["bob", "data1", "read"]]


def test_remove_filtered_policy_later_field(seeded):
    seeded.remove_filtered_policy("p", "p", 1, "data1")
    assert loaded(seeded).get_policy("p", "p") == [["alice", "data2", "write"]]


def test_remove_filtered_policy_whole_type(seeded):
    seeded.add_policy("g", "g", ["alice", "admin"])
    seeded.remove_filtered_policy("p", "p", -1)
    result = loaded(seeded)
    assert result.get_policy("p", "p") == []
    assert result.get_policy("g", "g") == [["alice", "admin"]]


def test_remove_filtered_policy_all_empty(seeded):
    with pytest.raises(ValueError, match="cannot all be empty"):
        seeded.remove_filtered_policy("p", "p", 0, "", "")
    assert len(loaded(seeded).get_policy("p", "p")) == 3


def test_update_policy(seeded):
    seeded.update_policy("p", "p", ["alice", "data1", "read"], ["alice", "data1", "write"])
    assert loaded(seeded).get_policy("p", "p")[0] == ["alice", "data1", "write"]


def test_update_policy_keeps_values_not_given(seeded):
    seeded.update_policy("p", "p", ["bob", "data1", "read"], ["carol"])
    assert ["carol", "data1", "read"] in loaded(seeded).get_policy("p", "p")


def test_update_policies(seeded):
    seeded.update_policies(
        "p",
        "p",
        [["alice", "data1", "read"], ["bob", "data1", "read"]],
        [["alice", "data1", "write"], ["bob", "data1", "write"]],
    )
    assert loaded(seeded).get_policy("p", "p") == [
        ["alice", "data1", "write"],
        ["alice", "data2", "write"],
        ["bob", "data1", "write"],
    ]


def test_update_policies_length_mismatch(seeded):
    with pytest.raises(ValueError):
        seeded.update_policies("p", "p", [["alice", "data1", "read"]], [])


def test_update_filtered_policies(seeded):
    removed = seeded.update_filtered_policies("p", "p", [["alice", "data3", "read"]], 0, "alice")
    assert removed == [["p", "alice", "data1", "read"], ["p", "alice", "data2", "write"]]
    assert loaded(seeded).get_policy("p", "p") == [["bob", "data1", "read"], ["alice", "data3", "read"]]


def test_update_filtered_policies_without_new_rules(seeded):
    assert seeded.update_filtered_policies("p", "p", [], 0, "alice") == []
    assert len(loaded(seeded).get_policy("p", "p")) == 3


def test_load_filtered_policy(seeded):
    seeded.add_policy("g", "g", ["alice", "admin"])
    assert seeded.is_filtered() is False
    model = fresh_model()
    seeded.load_filtered_policy(model, Filter(ptype=["p"], v0=["alice"]))
    assert model.get_policy("p", "p") == [["alice", "data1", "read"], ["alice", "data2", "write"]]
    assert model.get_policy("g", "g") == []
    assert seeded.is_filtered() is True


def test_load_filtered_policy_rejects_other_types(seeded):
    with pytest.raises(AdapterError, match="invalid filter type"):
        seeded.load_filtered_policy(fresh_model(), {"v0": ["alice"]})


def test_new_filtered_adapter():
    a = new_filtered_adapter("sqlite3", ":memory:")
    try:
        assert a.is_filtered() is True
    finally:
        a.close()


def test_from_engine_with_prefix():
    engine = create_engine("sqlite://", poolclass=StaticPool)
    a = Adapter.from_engine(engine, "cms", "casbin")
    assert a.full_table_name() == "cms_casbin"
    inspector = inspect(engine)
    assert "cms_casbin" in inspector.get_table_names()
    assert "idx_cms_casbin" in {index["name"] for index in inspector.get_indexes("cms_casbin")}
    a.add_policy("p", "p", ["alice", "data1", "read"])
    assert loaded(a).get_policy("p", "p") == [["alice", "data1", "read"]]
    a.close()


def test_from_engine_default_table_name():
    engine = create_engine("sqlite://", poolclass=StaticPool)
    a = Adapter.from_engine(engine, "", "")
    assert a.full_table_name() == "casbin_rule"
    assert "casbin_rule" in inspect(engine).get_table_names()
    a.close()


def test_from_engine_without_migration():
    engine = create_engine("sqlite://", poolclass=StaticPool)
    a = Adapter.from_engine(engine, auto_migrate=False)
    assert inspect(engine).get_table_names() == []
    a.close()


def test_file_database_persists(tmp_path):
    path = str(tmp_path / "rules.db")
    with Adapter("sqlite3", path) as first:
        first.add_policy("p", "p", ["alice", "data1", "read"])
    with Adapter("sqlite3", path) as second:
        assert loaded(second).get_policy("p", "p") == [["alice", "data1", "read"]]


def test_db_pool_switch(tmp_path):
    urls = [f"sqlite:///{tmp_path / 'one.db'}", f"sqlite:///{tmp_path / 'two.db'}"]
    pool = init_db_resolver(urls, ["one", "two"])
    assert pool.switch("two") is pool.engines[1]
    assert pool.current == 1
    assert pool.switch("missing") is pool.engines[0]
    for engine in pool.engines:
        engine.dispose()


def test_adapter_by_mul_db(tmp_path):
    urls = [f"sqlite:///{tmp_path / 'one.db'}", f"sqlite:///{tmp_path / 'two.db'}"]
    pool = init_db_resolver(urls, ["one", "two"])
    first = new_adapter_by_mul_db(pool, "one", "", "casbin_rule1")
    second = new_adapter_by_mul_db(pool, "two", "", "casbin_rule2")
    first.add_policy("p", "p", ["alice", "data1", "read"])
    second.add_policy("p", "p", ["bob", "data2", "write"])
    assert loaded(first).get_policy("p", "p") == [["alice", "data1", "read"]]
    assert loaded(second).get_policy("p", "p") == [["bob", "data2", "write"]]
    assert inspect(pool.engines[0]).get_table_names() == ["casbin_rule1"]
    assert inspect(pool.engines[1]).get_table_names() == ["casbin_rule2"]
    first.close()
    second.close()


def test_init_db_resolver_requires_databases():
    with pytest.raises(ValueError):
        init_db_resolver([], [])