"""
ログ設定モジュール

録音システム全体のログ設定を統一管理します。
- ログファイルは日付単位で分割（logs/YYYY-MM-DD.log）
- コンソール出力は --verbose または環境変数で有効化
- テスト時はファイル出力なし
"""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, Union


LOG_FORMAT = '%(asctime)s %(levelname)-8s %(name)s %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class RecorderLogConfig:
    """ログ設定管理クラス"""

    DEFAULT_LOG_LEVEL = logging.INFO
    DEFAULT_LOG_DIR = "logs"

    def __init__(self):
        self._initialized = False
        self._is_test_mode = self._detect_test_mode()
        self._console_output = self._determine_console_output()
        self._log_file: Optional[Path] = None

    def _detect_test_mode(self) -> bool:
        """テストモードかどうかを判定"""
        return any([
            'PYTEST_CURRENT_TEST' in os.environ,
            'pytest' in sys.modules,
            os.environ.get('RADIKO_RECORDER_TEST_MODE', '').lower() == 'true'
        ])

    def _determine_console_output(self) -> bool:
        """コンソール出力を行うかどうかを判定"""
        console_env = os.environ.get('RADIKO_RECORDER_CONSOLE_OUTPUT', '').lower()
        if console_env == 'true':
            return True
        elif console_env == 'false':
            return False
        return False

    @staticmethod
    def daily_log_file(log_dir: Union[str, Path], day: Optional[datetime] = None) -> Path:
        """日付単位のログファイルパスを返す"""
        day = day or datetime.now()
        return Path(log_dir) / f"{day.strftime('%Y-%m-%d')}.log"

    def setup_logging(self,
                      log_level: Optional[Union[str, int]] = None,
                      log_dir: Optional[Union[str, Path]] = None,
                      console_output: Optional[bool] = None) -> None:
        """
        ログ設定を初期化

        Args:
            log_level: ログレベル（DEBUG, INFO, WARNING, ERROR, CRITICAL）
            log_dir: ログファイルを置くディレクトリ
            console_output: コンソール出力の有無（None時は環境変数で判定）
        """
        if self._initialized:
            return

        if log_level is None:
            log_level = os.environ.get('RADIKO_RECORDER_LOG_LEVEL', self.DEFAULT_LOG_LEVEL)

        if isinstance(log_level, str):
            log_level = getattr(logging, log_level.upper(), self.DEFAULT_LOG_LEVEL)

        if log_dir is None:
            log_dir = os.environ.get('RADIKO_RECORDER_LOG_DIR', self.DEFAULT_LOG_DIR)

        if console_output is None:
            console_output = self._console_output

        handlers = []

        # ファイルハンドラー（テスト時以外で有効）
        if log_dir and not self._is_test_mode:
            try:
                log_file = self.daily_log_file(log_dir)
                log_file.parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.FileHandler(log_file, encoding='utf-8')
                file_handler.setLevel(log_level)
                handlers.append(file_handler)
                self._log_file = log_file
            except OSError as e:
                print(f"Warning: Failed to create log file handler: {e}", file=sys.stderr)

        if console_output:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(log_level)
            handlers.append(console_handler)

        if handlers:
            logging.basicConfig(
                level=log_level,
                handlers=handlers,
                format=LOG_FORMAT,
                datefmt=DATE_FORMAT,
                force=True
            )
        else:
            logging.basicConfig(
                level=log_level,
                handlers=[logging.NullHandler()],
                force=True
            )

        self._initialized = True

        logger = logging.getLogger(__name__)
        logger.debug(f"ログ設定完了 - レベル: {logging.getLevelName(log_level)}, "
                     f"ファイル: {self._log_file}, コンソール出力: {console_output}")

    def get_logger(self, name: str) -> logging.Logger:
        """ロガーを取得"""
        return logging.getLogger(name)

    def is_test_mode(self) -> bool:
        """テストモードかどうかを返す"""
        return self._is_test_mode

    @property
    def log_file(self) -> Optional[Path]:
        return self._log_file

    def reset(self) -> None:
        """ログ設定をリセット（テスト用）"""
        self._initialized = False
        self._log_file = None
        self._is_test_mode = self._detect_test_mode()
        self._console_output = self._determine_console_output()
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
            handler.close()


# グローバルインスタンス
_log_config = RecorderLogConfig()


def setup_logging(log_level: Optional[Union[str, int]] = None,
                  log_dir: Optional[Union[str, Path]] = None,
                  console_output: Optional[bool] = None) -> None:
    """
    ログ設定を初期化

    Args:
        log_level: ログレベル
        log_dir: ログディレクトリ
        console_output: コンソール出力の有無
    """
    _log_config.setup_logging(log_level, log_dir, console_output)


def get_logger(name: str) -> logging.Logger:
    """ロガーを取得"""
    return _log_config.get_logger(name)


def current_log_file() -> Optional[Path]:
    """現在書き込み中のログファイル"""
    return _log_config.log_file


def is_test_mode() -> bool:
    """テストモードかどうかを返す"""
    return _log_config.is_test_mode()


def reset_logging() -> None:
    """ログ設定をリセット（テスト用）"""
    _log_config.reset()
