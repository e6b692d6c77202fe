"""
ネットワーク処理ユーティリティ

Radiko API 用の HTTP セッション作成とリクエストヘッダーの統一機能
"""

import time
from typing import Dict, Optional

import requests


# 認証・プレイリスト・セグメント取得で共通のアプリケーション識別ヘッダー
RADIKO_APP_HEADERS = {
    'X-Radiko-App': 'pc_html5',
    'X-Radiko-App-Version': '0.0.1',
    'X-Radiko-User': 'dummy_user',
    'X-Radiko-Device': 'pc',
}

STANDARD_HEADERS = {
    'User-Agent': 'python3.7',
    'Accept': '*/*',
    'Connection': 'keep-alive',
}


def create_radiko_session(
    additional_headers: Optional[Dict[str, str]] = None
) -> requests.Session:
    """Radiko API用の標準セッションを作成

    Args:
        additional_headers: 追加ヘッダー辞書

    Returns:
        requests.Session: 設定済みセッション

    Note:
        requests はセッション単位のタイムアウトを持たないため、
        タイムアウトは各リクエストで request_timeout() の値を渡す。
    """
    session = requests.Session()
    headers = dict(STANDARD_HEADERS)
    if additional_headers:
        headers.update(additional_headers)
    session.headers.update(headers)
    return session


def request_timeout(timeout: float, deadline: Optional[float] = None,
                    minimum: float = 0.1) -> float:
    """締め切り（time.monotonic 基準の絶対時刻）までの残り時間でタイムアウトを切り詰める"""
    if deadline is None:
        return timeout
    return max(minimum, min(timeout, deadline - time.monotonic()))


def deadline_passed(deadline: Optional[float]) -> bool:
    return deadline is not None and time.monotonic() >= deadline


def backoff_delay(base: float, attempt: int) -> float:
    """指数バックオフの待機秒数（attempt は1始まり）"""
    return base * (2 ** (attempt - 1))
