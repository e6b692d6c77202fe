"""
ログ設定テスト
"""

import logging
import os
import unittest
from datetime import datetime
from pathlib import Path
from unittest.mock import patch

from radiko_recorder.logging_config import RecorderLogConfig, get_logger
from tests.utils.test_environment import TemporaryTestEnvironment


class TestRecorderLogConfig(unittest.TestCase):
    """ログ設定テスト"""

    def setUp(self):
        self.temp_env = TemporaryTestEnvironment()
        self.temp_env.__enter__()
        self.log_config = RecorderLogConfig()

    def tearDown(self):
        self.log_config.reset()
        self.temp_env.__exit__(None, None, None)

    def test_01_日付単位のログファイル名(self):
        path = RecorderLogConfig.daily_log_file("logs", datetime(2024, 11, 20, 23, 59))
        self.assertEqual(path, Path("logs") / "2024-11-20.log")

    def test_02_テスト実行中はテストモード(self):
        self.assertTrue(self.log_config.is_test_mode())

    def test_03_テストモードではファイルを作らない(self):
        self.log_config.setup_logging(log_level="DEBUG", log_dir=self.temp_env.logs_dir)

        self.assertIsNone(self.log_config.log_file)
        self.assertEqual(list(self.temp_env.logs_dir.iterdir()), [])
        self.assertEqual(logging.getLogger().level, logging.DEBUG)

    def test_04_通常モードでは日付のログファイルへ出力(self):
        with patch.object(RecorderLogConfig, '_detect_test_mode', return_value=False):
            log_config = RecorderLogConfig()
        try:
            log_config.setup_logging(log_level="INFO", log_dir=self.temp_env.logs_dir,
                                     console_output=False)
            get_logger("radiko_recorder.test").info("ログファイル出力テスト")

            log_file = RecorderLogConfig.daily_log_file(self.temp_env.logs_dir)
            self.assertEqual(log_config.log_file, log_file)
            for handler in logging.getLogger().handlers:
                handler.flush()
            content = log_file.read_text(encoding='utf-8')
            self.assertIn("ログファイル出力テスト", content)
            self.assertIn("radiko_recorder.test", content)
        finally:
            log_config.reset()

    def test_05_環境変数でコンソール出力とレベルを指定(self):
        env = {'RADIKO_RECORDER_CONSOLE_OUTPUT': 'true', 'RADIKO_RECORDER_LOG_LEVEL': 'WARNING'}
        with patch.dict(os.environ, env):
            log_config = RecorderLogConfig()
            try:
                log_config.setup_logging(log_dir=self.temp_env.logs_dir)

                root = logging.getLogger()
                self.assertEqual(root.level, logging.WARNING)
                self.assertTrue(any(isinstance(h, logging.StreamHandler) for h in root.handlers))
            finally:
                log_config.reset()

    def test_06_二重初期化しない(self):
        self.log_config.setup_logging(log_level="ERROR", log_dir=self.temp_env.logs_dir)
        self.log_config.setup_logging(log_level="DEBUG", log_dir=self.temp_env.logs_dir)

        self.assertEqual(logging.getLogger().level, logging.ERROR)


if __name__ == '__main__':
    unittest.main()
