"""
Tests for command descriptors and parameter normalization.
"""
import unittest
from collections import namedtuple
from dataclasses import dataclass

import pytest

from sqlfacade.data.commands import CommandType, SqlCommand, as_command, make_command, normalize_params


@dataclass
class PriceChange:
    item_id: int
    price: float


Point = namedtuple("Point", ["x", "y"])


class Filter:
    def __init__(self):
        self.location_id = 62
        self._cache = {}


class TestNormalizeParams(unittest.TestCase):
    """Test cases for normalize_params."""

    def test_none_becomes_empty_dict(self):
        self.assertEqual(normalize_params(None), {})

    def test_mapping_is_copied(self):
        params = {"id": 1}
        normalized = normalize_params(params)
        self.assertEqual(normalized, {"id": 1})
        self.assertIsNot(normalized, params)

    def test_dataclass_instance(self):
        self.assertEqual(normalize_params(PriceChange(7, 4.99)), {"item_id": 7, "price": 4.99})

    def test_namedtuple_is_a_single_set(self):
        self.assertEqual(normalize_params(Point(1, 2)), {"x": 1, "y": 2})

    def test_plain_object_skips_private_attributes(self):
        self.assertEqual(normalize_params(Filter()), {"location_id": 62})

    def test_list_is_a_batch(self):
        batch = normalize_params([{"id": 1}, PriceChange(2, 1.5)])
        self.assertEqual(batch, [{"id": 1}, {"item_id": 2, "price": 1.5}])

    def test_unsupported_parameter_raises(self):
        with self.assertRaises(TypeError):
            normalize_params(42)


class TestSqlCommand(unittest.TestCase):
    """Test cases for SqlCommand."""

    def test_empty_sql_is_rejected(self):
        for sql in ("", "   ", None):
            with self.assertRaises(ValueError):
                SqlCommand(sql)

    def test_defaults_to_text(self):
        command = SqlCommand("SELECT 1")
        self.assertIs(command.command_type, CommandType.TEXT)
        self.assertEqual(command.render(), "SELECT 1")
        self.assertEqual(command.params, {})

    def test_none_command_type_means_text(self):
        self.assertIs(SqlCommand("SELECT 1", None, None).command_type, CommandType.TEXT)

    def test_commands_are_immutable(self):
        command = SqlCommand("SELECT 1")
        with self.assertRaises(Exception):
            command.sql = "SELECT 2"

    def test_stored_procedure_renders_call(self):
        command = SqlCommand("update_price", {"item_id": 7, "price": 4.99}, CommandType.STORED_PROCEDURE)
        self.assertEqual(command.render("postgresql"), "CALL update_price(:item_id, :price)")

    def test_stored_procedure_renders_exec_on_sql_server(self):
        command = SqlCommand("update_price", {"item_id": 7, "price": 4.99}, CommandType.STORED_PROCEDURE)
        self.assertEqual(command.render("mssql"), "EXEC update_price @item_id=:item_id, @price=:price")

    def test_stored_procedure_without_parameters(self):
        command = SqlCommand("refresh_menus", command_type=CommandType.STORED_PROCEDURE)
        self.assertEqual(command.render("postgresql"), "CALL refresh_menus()")
        self.assertEqual(command.render("mssql"), "EXEC refresh_menus")

    def test_stored_procedure_batch_uses_first_parameter_set(self):
        command = SqlCommand("touch", [{"id": 1}, {"id": 2}], CommandType.STORED_PROCEDURE)
        self.assertEqual(command.render(), "CALL touch(:id)")

    def test_table_direct_selects_everything(self):
        command = SqlCommand(" menu_items ", command_type=CommandType.TABLE_DIRECT)
        self.assertEqual(command.render(), "SELECT * FROM menu_items")

    def test_to_statement_returns_text_clause(self):
        statement = SqlCommand("SELECT :x").to_statement()
        self.assertEqual(str(statement), "SELECT :x")


class TestCommandCoercion:
    """Test cases for as_command and make_command."""

    def test_command_passes_through(self):
        command = SqlCommand("SELECT 1")
        assert as_command(command) is command

    def test_string_becomes_text_command(self):
        assert as_command("DELETE FROM orders") == SqlCommand("DELETE FROM orders")

    def test_tuples(self):
        assert as_command(("SELECT :x", {"x": 1})) == SqlCommand("SELECT :x", {"x": 1})
        command = as_command(("orders", None, CommandType.TABLE_DIRECT))
        assert command.command_type is CommandType.TABLE_DIRECT

    @pytest.mark.parametrize("item", [42, (), ("a", None, CommandType.TEXT, "extra"), ["SELECT 1"]])
    def test_unsupported_entries_raise(self, item):
        with pytest.raises(TypeError):
            as_command(item)

    def test_make_command_defaults_command_type(self):
        assert make_command("SELECT 1").command_type is CommandType.TEXT
        assert make_command("orders", command_type=CommandType.TABLE_DIRECT).render() == "SELECT * FROM orders"
