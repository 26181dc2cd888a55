import pytest
from db_utils import _prepare_statement


def test_qmark_placeholders_become_named_binds():
    sql, params = _prepare_statement(
        "SELECT * FROM users WHERE id = ? AND role = ?", ("abc", "admin")
    )
    assert sql == "SELECT * FROM users WHERE id = :p0 AND role = :p1"
    assert params == {"p0": "abc", "p1": "admin"}


def test_numbered_placeholders_keep_their_positions():
    sql, params = _prepare_statement(
        "SELECT * FROM activity WHERE type = $2 OR action = $1 OR target = $1",
        ["Created user", "create"],
    )
    assert sql == "SELECT * FROM activity WHERE type = :p1 OR action = :p0 OR target = :p0"
    assert params == {"p0": "Created user", "p1": "create"}


def test_numbered_placeholders_do_not_collide_past_nine():
    values = [f"v{i}" for i in range(1, 11)]
    placeholders = ", ".join(f"${i}" for i in range(1, 11))
    sql, params = _prepare_statement(f"VALUES ({placeholders})", values)
    assert sql.endswith(":p8, :p9)")
    assert params["p9"] == "v10"


@pytest.mark.parametrize(
    "sql, values",
    [
        ("SELECT ? , ?", ["only-one"]),
        ("SELECT $1, $2", ["only-one"]),
        ("SELECT $1, $3", ["a", "b", "c"]),
    ],
)
def test_parameter_count_mismatch_is_rejected(sql, values):
    with pytest.raises(ValueError):
        _prepare_statement(sql, values)


def test_mapping_params_pass_through():
    sql, params = _prepare_statement("SELECT :name", {"name": "x"})
    assert sql == "SELECT :name"
    assert params == {"name": "x"}
