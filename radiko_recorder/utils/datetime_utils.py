"""
日時処理ユーティリティ

Radiko の時刻表現（日本時間の YYYYMMDDHHMMSS）と epoch 秒の相互変換
"""

from datetime import datetime

import pytz

JST = pytz.timezone('Asia/Tokyo')
RADIKO_TIME_FORMAT = '%Y%m%d%H%M%S'


def parse_radiko_time(value: str) -> datetime:
    """'YYYYMMDDHHMMSS' 形式の日本時間文字列を aware datetime に変換

    Raises:
        ValueError: 形式が不正な場合
    """
    if len(value) != 14 or not value.isdigit():
        raise ValueError(f"時刻は YYYYMMDDHHMMSS 形式で指定してください: {value}")
    naive = datetime.strptime(value, RADIKO_TIME_FORMAT)
    return JST.localize(naive)


def format_radiko_time(epoch: float) -> str:
    """epoch 秒を日本時間の 'YYYYMMDDHHMMSS' 文字列に変換"""
    return datetime.fromtimestamp(epoch, JST).strftime(RADIKO_TIME_FORMAT)


def to_epoch(dt: datetime) -> int:
    """datetime を epoch 秒（秒精度）に変換。naive な値は日本時間とみなす"""
    if dt.tzinfo is None:
        dt = JST.localize(dt)
    return int(dt.timestamp())


def jst_from_epoch(epoch: float) -> datetime:
    return datetime.fromtimestamp(epoch, JST)
