"""Checks on the alembic revisions that do not need a database."""

import ast
from pathlib import Path

from fleetledger.database import Base
import fleetledger.models  # noqa: F401

VERSIONS = Path(__file__).resolve().parent.parent / "alembic" / "versions"


def _tables(func_name: str, op_name: str) -> set[str]:
    tables = set()
    for path in VERSIONS.glob("*.py"):
        tree = ast.parse(path.read_text())
        for func in (n for n in tree.body if isinstance(n, ast.FunctionDef) and n.name == func_name):
            for call in (n for n in ast.walk(func) if isinstance(n, ast.Call)):
                if isinstance(call.func, ast.Attribute) and call.func.attr == op_name and call.args:
                    tables.add(call.args[0].value)
    return tables


def test_checkout_orders_table_is_not_migrated_here():
    assert "orders" not in _tables("upgrade", "create_table")
    assert "orders" not in _tables("downgrade", "drop_table")


def test_every_delivery_table_is_migrated_and_dropped():
    delivery_tables = set(Base.metadata.tables) - {"orders"}
    assert _tables("upgrade", "create_table") == delivery_tables
    assert _tables("downgrade", "drop_table") == delivery_tables
