"""
設定ファイル管理ユーティリティ

JSON設定ファイルの読み込みと、録音エンジンの調整値（RecorderConfig）を提供します。
リトライ回数・バックオフ・セッション有効期限・安全マージンなどの
サービス依存の値はすべてここでデフォルト値付きで定義します。
"""

import json
import re
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

from radiko_recorder.error_handler import ConfigurationError
from radiko_recorder.logging_config import get_logger

logger = get_logger(__name__)

AREA_ID_PATTERN = re.compile(r"^JP([1-9]|[1-3][0-9]|4[0-7])$")
OUTPUT_FORMATS = ("aac", "m4a", "mp3", "wav")
MAX_PREFETCH = 2


@dataclass(frozen=True)
class RecorderConfig:
    """録音エンジンの設定値"""

    area_id: str = "JP13"
    output_dir: str = "output"
    output_format: str = "aac"
    log_dir: str = "logs"

    # 認証・プレイリスト共通
    request_timeout: float = 5.0

    # 認証
    auth_max_attempts: int = 3
    auth_backoff: float = 1.0
    session_ttl: float = 3600.0

    # プレイリスト
    playlist_max_attempts: int = 3
    playlist_backoff: float = 1.0
    timeshift_days: int = 7

    # セグメント
    segment_max_attempts: int = 3
    segment_backoff: float = 0.5
    segment_timeout: float = 30.0
    prefetch: int = 2

    # ジョブ全体
    safety_margin: float = 120.0

    # エンコーダ
    ffmpeg_path: str = "ffmpeg"
    encoder_shutdown_timeout: float = 10.0
    embed_metadata: bool = True

    def __post_init__(self):
        self._check_types()
        if not AREA_ID_PATTERN.match(self.area_id):
            raise ConfigurationError(f"不正なエリアIDです: {self.area_id}")
        if self.output_format not in OUTPUT_FORMATS:
            raise ConfigurationError(f"未対応の出力形式です: {self.output_format}")
        for name in ("request_timeout", "auth_max_attempts", "session_ttl",
                     "playlist_max_attempts", "timeshift_days", "segment_max_attempts",
                     "segment_timeout", "encoder_shutdown_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} は正の値である必要があります")
        for name in ("auth_backoff", "playlist_backoff", "segment_backoff",
                     "safety_margin", "prefetch"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} は0以上である必要があります")
        if self.prefetch > MAX_PREFETCH:
            # frozen dataclass のため object.__setattr__ で丸める
            object.__setattr__(self, "prefetch", MAX_PREFETCH)

    def _check_types(self):
        """各項目の型を検証（JSON由来の文字列の数値などを拒否）"""
        for f in fields(self):
            value = getattr(self, f.name)
            if f.type is bool:
                valid = isinstance(value, bool)
            elif f.type is int:
                valid = isinstance(value, int) and not isinstance(value, bool)
            elif f.type is float:
                valid = isinstance(value, (int, float)) and not isinstance(value, bool)
            else:
                valid = isinstance(value, f.type)
            if not valid:
                raise ConfigurationError(
                    f"{f.name} の型が不正です: {value!r}（{f.type.__name__} が必要）",
                    context={'key': f.name})

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RecorderConfig':
        """辞書から生成（未知のキーは警告して無視）"""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning(f"未知の設定キーを無視します: {unknown}")
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def with_overrides(self, **overrides: Any) -> 'RecorderConfig':
        """None 以外の値で上書きした新しい設定を返す"""
        data = self.to_dict()
        data.update({k: v for k, v in overrides.items() if v is not None})
        return RecorderConfig(**data)


class ConfigManager:
    """統一設定管理クラス

    Usage:
        config_manager = ConfigManager("config.json")
        config = config_manager.load_recorder_config()
    """

    def __init__(self, config_path: Union[str, Path], encoding: str = 'utf-8'):
        self.config_path = Path(config_path)
        self.encoding = encoding

    def load_config(self, default_config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """設定ファイルを読み込み

        Args:
            default_config: デフォルト設定辞書

        Returns:
            設定辞書（ファイルが存在しない・壊れている場合はデフォルト設定）
        """
        if default_config is None:
            default_config = {}

        if not self.config_path.exists():
            logger.info(f"設定ファイルが存在しません、デフォルト設定を使用: {self.config_path}")
            return default_config.copy()

        try:
            with open(self.config_path, 'r', encoding=self.encoding) as f:
                config = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"設定ファイルJSON解析エラー: {self.config_path} - {e}")
            return default_config.copy()
        except OSError as e:
            logger.error(f"設定ファイル読み込みエラー: {self.config_path} - {e}")
            return default_config.copy()

        if not isinstance(config, dict):
            logger.error(f"設定データが辞書型ではありません: {self.config_path}")
            return default_config.copy()

        merged_config = default_config.copy()
        merged_config.update(config)
        logger.debug(f"設定ファイル読み込み成功: {self.config_path}")
        return merged_config

    def load_recorder_config(self) -> RecorderConfig:
        """設定ファイルから RecorderConfig を生成"""
        return RecorderConfig.from_dict(self.load_config(RecorderConfig().to_dict()))
