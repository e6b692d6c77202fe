"""
pytest configuration and fixtures for radiko_recorder tests
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from tests.utils.test_environment import TemporaryTestEnvironment


@pytest.fixture
def temp_env():
    """一時テスト環境fixture"""
    os.environ["RADIKO_RECORDER_TEST_MODE"] = "true"

    with TemporaryTestEnvironment() as env:
        yield env


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """テストセッション全体の環境設定"""
    os.environ["RADIKO_RECORDER_TEST_MODE"] = "true"
    os.environ["RADIKO_RECORDER_LOG_LEVEL"] = "DEBUG"

    yield

    for var in ("RADIKO_RECORDER_TEST_MODE", "RADIKO_RECORDER_LOG_LEVEL"):
        os.environ.pop(var, None)


@pytest.fixture(autouse=True)
def enable_logging():
    """テスト実行時のログ出力を有効化"""
    import gc
    import logging
    import warnings

    logging.basicConfig(level=logging.DEBUG)
    warnings.filterwarnings("ignore", category=ResourceWarning)

    yield

    gc.collect()
