"""
エラーハンドリングモジュール

このモジュールは録音システムの統一エラー体系を提供します。
- カスタム例外クラス（認証・プレイリスト・セグメント・エンコーダ・ジョブ）
- 例外ごとのエラー種別（kind）とリトライ可否
- ユーザー向けエラーメッセージ整形
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional

from .logging_config import get_logger


class ErrorSeverity(Enum):
    """エラー重要度"""
    LOW = "low"           # 軽微な警告
    MEDIUM = "medium"     # 注意が必要なエラー
    HIGH = "high"         # 重要なエラー
    CRITICAL = "critical" # 致命的なエラー


class ErrorCategory(Enum):
    """エラーカテゴリ"""
    AUTHENTICATION = "auth"
    PLAYLIST = "playlist"
    SEGMENT = "segment"
    ENCODER = "encoder"
    JOB = "job"
    CATALOG = "catalog"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


class AuthErrorKind(Enum):
    NETWORK = "network"
    REJECTED = "rejected"
    PROTOCOL = "protocol"


class PlaylistErrorKind(Enum):
    NETWORK = "network"
    OUT_OF_RANGE = "out_of_range"
    EMPTY = "empty"
    MALFORMED = "malformed"
    REJECTED = "rejected"


class SegmentErrorKind(Enum):
    NETWORK = "network"
    GONE = "gone"


class EncoderErrorKind(Enum):
    SPAWN_FAILED = "spawn_failed"
    NON_ZERO_EXIT = "non_zero_exit"
    PIPE_CLOSED = "pipe_closed"


class JobErrorKind(Enum):
    TIMEOUT = "timeout"


# カスタム例外クラス群

class RecorderError(Exception):
    """録音システム基底例外クラス"""

    kind: Optional[Enum] = None

    def __init__(self, message: str, category: ErrorCategory = ErrorCategory.UNKNOWN,
                 severity: ErrorSeverity = ErrorSeverity.MEDIUM, context: Dict[str, Any] = None):
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.context = context or {}

    @property
    def retryable(self) -> bool:
        """ネットワーク系の一時的エラーのみリトライ対象"""
        return self.kind is not None and self.kind.value == "network"

    @property
    def kind_name(self) -> str:
        """'<カテゴリ>/<種別>' 形式の識別子"""
        kind = self.kind.value if self.kind is not None else "error"
        return f"{self.category.value}/{kind}"


class AuthError(RecorderError):
    """認証エラー"""
    def __init__(self, kind: AuthErrorKind, message: str, context: Dict[str, Any] = None):
        super().__init__(message, ErrorCategory.AUTHENTICATION, ErrorSeverity.HIGH, context)
        self.kind = kind


class PlaylistError(RecorderError):
    """プレイリスト解決エラー"""
    def __init__(self, kind: PlaylistErrorKind, message: str, context: Dict[str, Any] = None):
        super().__init__(message, ErrorCategory.PLAYLIST, ErrorSeverity.HIGH, context)
        self.kind = kind


class SegmentError(RecorderError):
    """セグメント取得エラー"""
    def __init__(self, kind: SegmentErrorKind, message: str, sequence: Optional[int] = None,
                 status: Optional[int] = None, context: Dict[str, Any] = None):
        super().__init__(message, ErrorCategory.SEGMENT, ErrorSeverity.HIGH, context)
        self.kind = kind
        self.sequence = sequence
        self.status = status


class EncoderError(RecorderError):
    """外部エンコーダエラー"""
    def __init__(self, kind: EncoderErrorKind, message: str, returncode: Optional[int] = None,
                 context: Dict[str, Any] = None):
        super().__init__(message, ErrorCategory.ENCODER, ErrorSeverity.HIGH, context)
        self.kind = kind
        self.returncode = returncode


class JobError(RecorderError):
    """ジョブ全体のエラー（締め切り超過）"""
    def __init__(self, kind: JobErrorKind, message: str, context: Dict[str, Any] = None):
        super().__init__(message, ErrorCategory.JOB, ErrorSeverity.CRITICAL, context)
        self.kind = kind


class CatalogError(RecorderError):
    """放送局リストエラー"""
    def __init__(self, message: str, context: Dict[str, Any] = None):
        super().__init__(message, ErrorCategory.CATALOG, ErrorSeverity.MEDIUM, context)


class ConfigurationError(RecorderError):
    """設定エラー"""
    def __init__(self, message: str, context: Dict[str, Any] = None):
        super().__init__(message, ErrorCategory.CONFIGURATION, ErrorSeverity.HIGH, context)


_SEVERITY_LOG_LEVELS = {
    ErrorSeverity.LOW: logging.INFO,
    ErrorSeverity.MEDIUM: logging.WARNING,
    ErrorSeverity.HIGH: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


def describe_error(error: BaseException) -> str:
    """ユーザー向けのエラー表示文字列を生成

    Returns:
        str: '<カテゴリ>/<種別>: <メッセージ>' 形式
    """
    if isinstance(error, RecorderError):
        return f"{error.kind_name}: {error.message}"
    return f"{ErrorCategory.UNKNOWN.value}/{type(error).__name__}: {error}"


def handle_error(error: BaseException, logger: Optional[logging.Logger] = None,
                 context: Dict[str, Any] = None) -> str:
    """エラーを重要度に応じたレベルでログに記録し、表示文字列を返す"""
    logger = logger or get_logger(__name__)

    if isinstance(error, RecorderError):
        level = _SEVERITY_LOG_LEVELS[error.severity]
        merged = {**error.context, **(context or {})}
    else:
        level = logging.ERROR
        merged = context or {}

    message = describe_error(error)
    logger.log(level, message)
    if merged:
        logger.debug(f"Context: {merged}")
    return message
