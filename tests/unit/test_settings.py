"""
Tests for configuration loading and facade construction from configuration.
"""
import logging
import os
import tempfile
import unittest
from unittest.mock import patch

from sqlfacade.config.settings import Config, get_config, resolve_env_value
from sqlfacade.data.facade import DataFacade
from sqlfacade.utils.logging import setup_logging, setup_logging_from_config


class TestResolveEnvValue(unittest.TestCase):
    """Test cases for ${ENV_VAR} placeholders."""

    def test_plain_strings_are_unchanged(self):
        self.assertEqual(resolve_env_value("sqlite:///menu.db"), "sqlite:///menu.db")

    @patch.dict(os.environ, {"MENU_DB_URL": "postgresql://localhost/menus"})
    def test_variable_is_substituted(self):
        self.assertEqual(resolve_env_value("${MENU_DB_URL}"), "postgresql://localhost/menus")

    @patch.dict(os.environ, {}, clear=True)
    def test_default_is_used_when_unset(self):
        self.assertEqual(resolve_env_value("${POOL_SIZE:-5}"), 5)
        self.assertEqual(resolve_env_value("${PRE_PING:-true}"), True)
        self.assertEqual(resolve_env_value("${TIMEOUT:-2.5}"), 2.5)
        self.assertEqual(resolve_env_value("${ASYNC_URL:-}"), "")

    @patch.dict(os.environ, {}, clear=True)
    def test_unset_without_default_is_none(self):
        with self.assertLogs("sqlfacade.config.settings", level="WARNING"):
            self.assertIsNone(resolve_env_value("${MISSING_URL}"))


class TestConfig(unittest.TestCase):
    """Test cases for the Config class."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.config_path = os.path.join(self.tmpdir.name, "config.yaml")
        with open(self.config_path, "w") as f:
            f.write(
                "database:\n"
                "  connection_string: ${TEST_DATABASE_URL:-sqlite:///menu.db}\n"
                "  pool_recycle: 300\n"
                "logging:\n"
                "  level: DEBUG\n"
            )
        Config.reset()

    def tearDown(self):
        Config.reset()
        self.tmpdir.cleanup()

    @patch.dict(os.environ, {}, clear=True)
    def test_from_file(self):
        config = Config.from_file(self.config_path)
        self.assertEqual(config.get("database.connection_string"), "sqlite:///menu.db")
        self.assertEqual(config.get("database.pool_recycle"), 300)
        self.assertEqual(config.get("database.pool_size", 10), 10)
        self.assertEqual(config.get("nothing.here", "fallback"), "fallback")
        self.assertIn("logging", config.get_all())

    def test_missing_file_gives_empty_config(self):
        config = get_config(os.path.join(self.tmpdir.name, "absent.yaml"))
        self.assertEqual(config.get_all(), {})
        self.assertEqual(config.get("database.connection_string", "default"), "default")

    def test_invalid_yaml_gives_empty_config(self):
        with open(self.config_path, "w") as f:
            f.write("database: [unclosed\n")
        self.assertEqual(Config.from_file(self.config_path).get_all(), {})

    def test_singleton_reads_path_from_environment(self):
        with patch.dict(os.environ, {"SQLFACADE_CONFIG": self.config_path}):
            first = Config()
            second = get_config()
        self.assertIs(first, second)
        self.assertEqual(first.get("logging.level"), "DEBUG")

    @patch.dict(os.environ, {"TEST_ECHO": "false"})
    def test_from_dict_resolves_placeholders(self):
        config = Config.from_dict({"database": {"echo": "${TEST_ECHO}"}})
        self.assertIs(config.get("database.echo"), False)


class TestFacadeFromConfig(unittest.TestCase):
    """Test cases for DataFacade.from_config."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.connection_string = f"sqlite:///{os.path.join(self.tmpdir.name, 'menu.db')}"

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_database_section_configures_facade(self):
        config = Config.from_dict({
            "database": {
                "connection_string": self.connection_string,
                "async_connection_string": "",
                "pool_pre_ping": True,
                "pool_recycle": 600,
                "echo": False,
                "suppress_transaction_errors": False,
                "max_rows": 1000,
            }
        })
        with DataFacade.from_config(config) as facade:
            self.assertEqual(facade.connection_string, self.connection_string)
            self.assertFalse(facade.transactions.suppress_errors)
            self.assertTrue(facade.provider.async_connection_string.startswith("sqlite+aiosqlite"))
            self.assertEqual(facade.query_scalar("SELECT 1"), 1)

    def test_missing_connection_string_raises(self):
        with self.assertRaises(ValueError):
            DataFacade.from_config(Config.from_dict({"database": {"pool_recycle": 600}}))
        with self.assertRaises(ValueError):
            DataFacade.from_config(Config.from_dict({}))


class TestLoggingSetup(unittest.TestCase):
    """Test cases for setup_logging."""

    def setUp(self):
        self.root_logger = logging.getLogger()
        self.saved_handlers = list(self.root_logger.handlers)
        self.saved_level = self.root_logger.level
        self.saved_package_level = logging.getLogger("sqlfacade").level
        self.tmpdir = tempfile.TemporaryDirectory()

    def tearDown(self):
        for handler in self.root_logger.handlers:
            handler.close()
        self.root_logger.handlers[:] = self.saved_handlers
        self.root_logger.setLevel(self.saved_level)
        logging.getLogger("sqlfacade").setLevel(self.saved_package_level)
        self.tmpdir.cleanup()

    def test_file_logging(self):
        log_file = os.path.join(self.tmpdir.name, "logs", "sqlfacade.log")
        setup_logging("DEBUG", log_file=log_file)

        logging.getLogger("sqlfacade.data").debug("connection acquired")
        for handler in self.root_logger.handlers:
            handler.flush()

        with open(log_file) as f:
            self.assertIn("connection acquired", f.read())
        self.assertEqual(logging.getLogger("sqlalchemy.engine").level, logging.WARNING)

    def test_invalid_level_raises(self):
        with self.assertRaises(ValueError):
            setup_logging("VERBOSE")

    def test_from_config(self):
        setup_logging_from_config(Config.from_dict({"logging": {"level": "WARNING", "file": ""}}))
        self.assertEqual(self.root_logger.level, logging.WARNING)
