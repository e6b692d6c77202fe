"""
ユーティリティモジュール

共通機能やヘルパー関数を提供するユーティリティパッケージ
"""

from typing import List
from .base import LoggerMixin
from .config_utils import ConfigManager, RecorderConfig
from .datetime_utils import format_radiko_time, parse_radiko_time
from .network_utils import create_radiko_session

__all__: List[str] = [
    'LoggerMixin',
    'ConfigManager',
    'RecorderConfig',
    'format_radiko_time',
    'parse_radiko_time',
    'create_radiko_session',
]
