"""
radiko_recorder - Radiko タイムフリー録音エンジン

主要コンポーネント:
- station_catalog: 放送局リスト
- auth: 2段階認証（部分鍵ハンドシェイク）
- playlist: タイムフリープレイリスト解決
- segment_fetcher: セグメントの順序保証付き取得
- encoder: 外部エンコーダ（FFmpeg）
- recorder: 録音ジョブのオーケストレーション
- cli: コマンドライン操作
"""

__version__ = "1.0.0"
__license__ = "MIT"

from .auth import RadikoAuthClient, AuthSession
from .station_catalog import StationCatalog, Station
from .playlist import PlaylistResolver, PlaylistEntry, TimeWindow
from .segment_fetcher import SegmentFetcher
from .encoder import FFmpegEncoder
from .job import RecordingJob, RecordingResult, JobStatus, transition
from .recorder import RecordingOrchestrator
from .error_handler import (
    RecorderError, AuthError, AuthErrorKind, PlaylistError, PlaylistErrorKind,
    SegmentError, SegmentErrorKind, EncoderError, EncoderErrorKind,
    JobError, JobErrorKind, CatalogError, ConfigurationError, describe_error,
)
from .cli import RadikoRecorderCLI

__all__ = [
    # 認証関連
    'RadikoAuthClient',
    'AuthSession',

    # 放送局関連
    'StationCatalog',
    'Station',

    # プレイリスト・セグメント関連
    'PlaylistResolver',
    'PlaylistEntry',
    'TimeWindow',
    'SegmentFetcher',
    'FFmpegEncoder',

    # 録音ジョブ関連
    'RecordingJob',
    'RecordingResult',
    'JobStatus',
    'transition',
    'RecordingOrchestrator',

    # エラーハンドリング関連
    'RecorderError',
    'AuthError',
    'AuthErrorKind',
    'PlaylistError',
    'PlaylistErrorKind',
    'SegmentError',
    'SegmentErrorKind',
    'EncoderError',
    'EncoderErrorKind',
    'JobError',
    'JobErrorKind',
    'CatalogError',
    'ConfigurationError',
    'describe_error',

    # インターフェース関連
    'RadikoRecorderCLI',
]
