"""
Radiko認証モジュール

このモジュールはRadikoサービスへの2段階認証（auth1 → auth2）を管理します。
- auth1: アプリ識別ヘッダーを送り、認証トークンと部分鍵の位置（offset, length）を受け取る
- 部分鍵: 埋め込みキーの該当範囲をBase64エンコード
- auth2: トークンと部分鍵を送り、割り当てエリアIDを受け取る
"""

import base64
import re
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import requests
from requests.structures import CaseInsensitiveDict

from .error_handler import AuthError, AuthErrorKind
from .utils.base import LoggerMixin
from .utils.config_utils import RecorderConfig
from .utils.network_utils import (
    RADIKO_APP_HEADERS, backoff_delay, create_radiko_session, deadline_passed, request_timeout
)

AREA_ID_RESPONSE_PATTERN = re.compile(r"^JP\d{1,2}$")
OUT_OF_AREA = "OUT"


@dataclass(frozen=True)
class AuthSession:
    """認証済みセッション（不変。再認証時は丸ごと置き換える）"""
    token: str
    area_id: str
    obtained_at: float
    ttl: float

    @property
    def expires_at(self) -> float:
        return self.obtained_at + self.ttl

    def is_expired(self, now: Optional[float] = None) -> bool:
        """認証トークンが期限切れかどうかをチェック"""
        now = time.time() if now is None else now
        return now >= self.expires_at

    def headers(self) -> Dict[str, str]:
        """プレイリスト・セグメント取得用の認証ヘッダー"""
        return {
            'X-Radiko-AuthToken': self.token,
            'X-Radiko-AreaId': self.area_id,
        }

    def __repr__(self) -> str:
        return (f"AuthSession(token='{self.token[:8]}...', area_id='{self.area_id}', "
                f"obtained_at={self.obtained_at}, ttl={self.ttl})")


class RadikoAuthClient(LoggerMixin):
    """Radiko認証を管理するクラス"""

    AUTH1_URL = "https://radiko.jp/v2/api/auth1"
    AUTH2_URL = "https://radiko.jp/v2/api/auth2"

    # Radiko認証キー（固定値）
    AUTH_KEY = b"bcd151073c03b352e1ef2fd66c32209da9ca0afa"

    def __init__(self, config: Optional[RecorderConfig] = None,
                 session: Optional[requests.Session] = None,
                 clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], None] = time.sleep):
        super().__init__()
        self.config = config or RecorderConfig()
        self.session = session or create_radiko_session()
        self.clock = clock
        self.sleep = sleep

    @classmethod
    def generate_partial_key(cls, offset: int, length: int) -> str:
        """部分鍵を生成

        Raises:
            AuthError: 指定範囲が埋め込みキーの外にある場合（PROTOCOL）
        """
        if offset < 0 or length <= 0 or offset + length > len(cls.AUTH_KEY):
            raise AuthError(AuthErrorKind.PROTOCOL,
                            f"部分鍵の範囲が不正です: offset={offset}, length={length}")
        return base64.b64encode(cls.AUTH_KEY[offset:offset + length]).decode('ascii')

    def authenticate(self, current: Optional[AuthSession] = None,
                     deadline: Optional[float] = None) -> AuthSession:
        """有効なセッションを返す

        current が期限内であればネットワークアクセスなしでそのまま返し、
        未取得・期限切れの場合のみハンドシェイクを実行する。

        Args:
            current: 現在保持しているセッション
            deadline: time.monotonic 基準の締め切り

        Raises:
            AuthError: NETWORK（リトライ上限到達）/ REJECTED / PROTOCOL
        """
        if current is not None and not current.is_expired(self.clock()):
            self.logger.debug("有効なセッションを再利用")
            return current

        max_attempts = self.config.auth_max_attempts
        for attempt in range(1, max_attempts + 1):
            try:
                self.logger.info(f"Radiko認証を開始 (試行 {attempt}/{max_attempts})")
                return self._handshake(deadline)
            except requests.RequestException as e:
                self.logger.warning(f"認証リクエストエラー (試行 {attempt}/{max_attempts}): {e}")
                if attempt == max_attempts or deadline_passed(deadline):
                    raise AuthError(AuthErrorKind.NETWORK, f"認証リクエストに失敗しました: {e}") from e
                self.sleep(backoff_delay(self.config.auth_backoff, attempt))

        # max_attempts >= 1 のためここには到達しない
        raise AuthError(AuthErrorKind.NETWORK, "認証リクエストに失敗しました")

    def _handshake(self, deadline: Optional[float]) -> AuthSession:
        base_headers = dict(RADIKO_APP_HEADERS)
        base_headers['X-Radiko-AreaId'] = self.config.area_id

        # Step 1: 認証開始リクエスト
        auth1_response = self._call(self.AUTH1_URL, base_headers, deadline)
        challenge = CaseInsensitiveDict(auth1_response.headers)

        token = challenge.get('X-Radiko-AuthToken')
        key_offset = challenge.get('X-Radiko-KeyOffset')
        key_length = challenge.get('X-Radiko-KeyLength')

        if not token:
            raise AuthError(AuthErrorKind.PROTOCOL, "認証トークンが取得できませんでした")
        if key_offset is None or key_length is None:
            raise AuthError(AuthErrorKind.PROTOCOL, "認証キー情報が取得できませんでした")
        try:
            offset, length = int(key_offset), int(key_length)
        except ValueError as e:
            raise AuthError(AuthErrorKind.PROTOCOL,
                            f"認証キー情報が数値ではありません: offset={key_offset}, length={key_length}"
                            ) from e

        partial_key = self.generate_partial_key(offset, length)
        self.logger.debug(f"認証トークン取得: {token[:8]}... (offset={offset}, length={length})")

        # Step 2: 部分鍵を提示して認証を完了
        auth2_headers = dict(base_headers)
        auth2_headers['X-Radiko-AuthToken'] = token
        auth2_headers['X-Radiko-Partialkey'] = partial_key

        auth2_response = self._call(self.AUTH2_URL, auth2_headers, deadline)
        area_id = self._parse_area_id(auth2_response.text)

        session = AuthSession(
            token=token,
            area_id=area_id,
            obtained_at=self.clock(),
            ttl=self.config.session_ttl,
        )
        self.logger.info(f"認証完了: area_id={area_id}")
        return session

    def _call(self, url: str, headers: Dict[str, str],
              deadline: Optional[float]) -> requests.Response:
        response = self.session.get(
            url,
            headers=headers,
            timeout=request_timeout(self.config.request_timeout, deadline),
        )
        if response.status_code != 200:
            self.logger.warning(f"認証失敗: {url} status={response.status_code}")
            raise AuthError(AuthErrorKind.REJECTED,
                            f"{url} が HTTP {response.status_code} を返しました",
                            context={'status': response.status_code})
        self.logger.debug(f"auth in {url} is success.")
        return response

    @staticmethod
    def _parse_area_id(body: Optional[str]) -> str:
        """auth2 のレスポンス本文 'JP13,東京都,tokyo Japan' からエリアIDを取り出す"""
        first = (body or "").strip().split(',')[0].strip()
        if first == OUT_OF_AREA:
            raise AuthError(AuthErrorKind.REJECTED, "サービス提供エリア外です")
        if not AREA_ID_RESPONSE_PATTERN.match(first):
            raise AuthError(AuthErrorKind.PROTOCOL, f"auth2 のレスポンスが不正です: {body!r}")
        return first

    def close(self):
        self.session.close()
