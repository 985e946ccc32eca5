"""Tests for SQL statement building."""

from __future__ import annotations

import pytest

from entitykit import (
    DeleteStatement,
    InsertStatement,
    SelectStatement,
    UpdateStatement,
    get_metadata,
    id_predicate,
    select_column_list,
)
from entitykit.query import build_join_plan, render_literal
from entities import Author, Country, Order, OrderItem, Person1, Person2, Person3, WithColumnNonInsertable, WithId


class TestIdPredicate:
    """The <table>.<id column>=<value> predicate."""

    def test_person1(self) -> None:
        assert id_predicate(get_metadata(Person1), 1) == "person1.id=1"

    def test_person2(self) -> None:
        assert id_predicate(get_metadata(Person2), 2) == "person2.id=2"

    def test_explicit_table_name(self) -> None:
        assert id_predicate(get_metadata(Person3), 500) == "users.id=500"

    def test_string_identifier_is_quoted(self) -> None:
        assert id_predicate(get_metadata(Country), "FR") == "countries.code='FR'"

    def test_embedded_quote_is_doubled(self) -> None:
        assert id_predicate(get_metadata(Country), "O'B") == "countries.code='O''B'"


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, "NULL"),
        (True, "1"),
        (False, "0"),
        (42, "42"),
        (1.5, "1.5"),
        ("abc", "'abc'"),
    ],
)
def test_render_literal(value, expected) -> None:
    assert render_literal(value) == expected


class TestSelect:
    """SELECT statements with eager joins."""

    def test_select_column_list(self) -> None:
        assert select_column_list(get_metadata(Person1)) == "person1.id, person1.name, person1.age"

    def test_select_by_id(self) -> None:
        sql, params = SelectStatement.by_id(get_metadata(Person1), 1).to_sql()
        assert sql == (
            "SELECT person1.id, person1.name, person1.age FROM person1 "
            "WHERE person1.id=1 ORDER BY person1.id"
        )
        assert params == []

    def test_select_with_eager_join(self) -> None:
        sql, _ = SelectStatement.by_id(get_metadata(Order), 1).to_sql()
        assert sql == (
            "SELECT orders.id, orders.orderNumber, order_items.id, order_items.product, order_items.quantity "
            "FROM orders LEFT JOIN order_items ON orders.id=order_items.order_id "
            "WHERE orders.id=1 ORDER BY orders.id, order_items.id"
        )

    def test_lazy_association_is_not_joined(self) -> None:
        sql, _ = SelectStatement.by_id(get_metadata(Author), 1).to_sql()
        assert "JOIN" not in sql
        assert sql.startswith("SELECT authors.id, authors.name FROM authors")

    def test_select_by_join_column(self) -> None:
        sql, _ = SelectStatement.by_join_column(get_metadata(OrderItem), "order_id", 3).to_sql()
        assert sql.endswith("FROM order_items WHERE order_items.order_id=3 ORDER BY order_items.id")

    def test_join_plan_offsets(self) -> None:
        plan = build_join_plan(get_metadata(Order))
        assert (plan.start, plan.width) == (0, 2)
        (items,) = plan.children
        assert (items.start, items.width, items.id_offset) == (2, 3, 2)
        assert items.association is not None
        assert items.association.field_name == "items"
        assert [node.metadata.table_name for node in plan.walk()] == ["orders", "order_items"]


class TestInsert:
    """INSERT statements."""

    def test_generated_identifier_is_omitted(self) -> None:
        statement = InsertStatement.for_instance(get_metadata(Order), Order(orderNumber="A-1"))
        assert statement.to_sql() == ("INSERT INTO orders (orderNumber) VALUES (?)", ["A-1"])

    def test_postgres_placeholders_and_returning(self) -> None:
        item = OrderItem(product="pen", quantity=2)
        statement = InsertStatement.for_instance(get_metadata(OrderItem), item, {"order_id": 9})
        assert statement.to_sql("postgresql") == (
            "INSERT INTO order_items (product, quantity, order_id) VALUES ($1, $2, $3) RETURNING id",
            ["pen", 2, 9],
        )

    def test_assigned_identifier_is_included(self) -> None:
        statement = InsertStatement.for_instance(get_metadata(Country), Country(code="FR", name="France"))
        assert statement.to_sql() == ("INSERT INTO countries (code, name) VALUES (?, ?)", ["FR", "France"])

    def test_non_insertable_column_is_omitted(self) -> None:
        entity = WithColumnNonInsertable(insertableColumn="a", nonInsertableColumn="b")
        sql, params = InsertStatement.for_instance(get_metadata(WithColumnNonInsertable), entity).to_sql()
        assert sql == "INSERT INTO WithColumnNonInsertable (insertableColumn) VALUES (?)"
        assert params == ["a"]

    def test_default_values(self) -> None:
        sql, params = InsertStatement.for_instance(get_metadata(WithId), WithId()).to_sql()
        assert sql == "INSERT INTO WithId DEFAULT VALUES"
        assert params == []


class TestUpdate:
    """UPDATE statements of changed columns."""

    def test_only_changed_columns(self) -> None:
        metadata = get_metadata(Person1)
        person = Person1(id=1, name="Pat", age=30)
        snapshot = metadata.snapshot(person)
        person.age = 31

        statement = UpdateStatement.for_changes(metadata, snapshot, person)
        assert statement is not None
        assert statement.to_sql() == ("UPDATE person1 SET age = ? WHERE person1.id=1", [31])

    def test_no_changes(self) -> None:
        metadata = get_metadata(Person1)
        person = Person1(id=1, name="Pat", age=30)
        assert UpdateStatement.for_changes(metadata, metadata.snapshot(person), person) is None

    def test_postgres_placeholders(self) -> None:
        statement = UpdateStatement(get_metadata(Person1), 1, {"name": "Sam", "age": 40})
        assert statement.to_sql("postgresql") == (
            "UPDATE person1 SET name = $1, age = $2 WHERE person1.id=1",
            ["Sam", 40],
        )


def test_delete() -> None:
    assert DeleteStatement(get_metadata(Person3), 500).to_sql() == ("DELETE FROM users WHERE users.id=500", [])
