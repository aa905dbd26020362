import unittest
import logging
from voice_relay.config.logging_config import configure_logging

class TestLoggingConfig(unittest.TestCase):
    def test_configure_logging(self):
        # Test that the function returns a logger
        logger = configure_logging("INFO")
        self.assertIsInstance(logger, logging.Logger)

        # Test that the logger has the correct name
        self.assertEqual(logger.name, "voice_relay")

        # Test that the logger has the correct level
        self.assertEqual(logger.level, logging.INFO)

        # Test that the logger has the correct handlers and format
        self.assertGreaterEqual(len(logger.handlers), 1)  # At least one handler (console)
        handler = logger.handlers[0]  # Check first handler (should be console handler)
        self.assertIsInstance(handler, logging.StreamHandler)
        formatter = handler.formatter
        self.assertEqual(formatter._fmt, "%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    def test_level_override(self):
        logger = configure_logging("debug")
        self.assertEqual(logger.level, logging.DEBUG)

    def test_reconfigure_does_not_duplicate_handlers(self):
        first = len(configure_logging("INFO").handlers)
        second = len(configure_logging("INFO").handlers)
        self.assertEqual(first, second)

    def test_does_not_propagate_to_root(self):
        logger = configure_logging("INFO")
        self.assertFalse(logger.propagate)

if __name__ == "__main__":
    unittest.main()
