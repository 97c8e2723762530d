import importlib
import logging
import unittest
from unittest import mock

import luckydraw.main


class EntryPointTests(unittest.TestCase):
    def tearDown(self):
        importlib.reload(luckydraw.main)

    def test_dotenv_is_loaded_before_logging_is_configured(self):
        calls = []

        def fake_load_dotenv(*args, **kwargs):
            calls.append("dotenv")
            return False

        def fake_get_logger(name=None):
            calls.append("logger")
            return logging.getLogger(name)

        with mock.patch("dotenv.load_dotenv", side_effect=fake_load_dotenv), mock.patch(
            "luckydraw.utils.logger.get_logger", side_effect=fake_get_logger
        ):
            importlib.reload(luckydraw.main)

        self.assertEqual(calls, ["dotenv", "logger"])


if __name__ == "__main__":
    unittest.main()
