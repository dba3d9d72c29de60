"""Test the logging layer"""

import logging
import tempfile
import unittest
from pathlib import Path

from lmpipe.utils.logging import (
    ConsoleLogger,
    ExceptionConsoleLogger,
    FileLogger,
    LoglistLogger,
    get_logger,
    set_log_level,
)


class TestLoglistLogger(unittest.TestCase):

    def test_levels(self):
        logger = LoglistLogger()
        logger.debug("d")
        logger.info("i")
        logger.warning("w")
        logger.error("e")
        logger.critical("c")
        self.assertEqual(logger.count_logs(), 5)
        self.assertEqual(
            logger.get_logs(level=1),
            ["WARNING - w", "ERROR - e", "CRITICAL - c"],
        )
        self.assertEqual(logger.count_logs(level=2), 2)

    def test_clear(self):
        logger = LoglistLogger()
        logger.info("message")
        logger.clear_logs()
        self.assertEqual(logger.count_logs(), 0)


class TestConsoleLogger(unittest.TestCase):

    def test_set_level(self):
        logger = ConsoleLogger("lmpipe.test_console")
        logger.set_level(logging.WARNING)
        self.assertEqual(logger.get_level(), logging.WARNING)

    def test_package_level(self):
        logger = get_logger("lmpipe.test_package_level")
        set_log_level("ERROR")
        try:
            self.assertEqual(logger.get_level(), logging.ERROR)
        finally:
            set_log_level("INFO")

    def test_exception_logger(self):
        logger = ExceptionConsoleLogger("lmpipe.test_exception")
        with self.assertRaises(RuntimeError):
            logger.error("failure")


class TestFileLogger(unittest.TestCase):

    def test_write(self):
        with tempfile.TemporaryDirectory() as folder:
            path = Path(folder) / "test.log"
            logger = FileLogger("lmpipe.test_file", path)
            logger.info("written to file")
            for handler in logger.logger.handlers:
                handler.flush()
                handler.close()
            self.assertIn("written to file", path.read_text())


if __name__ == '__main__':
    unittest.main()
