"""
タイムフリープレイリスト解決モジュール

このモジュールは指定した放送局・時間枠のタイムフリープレイリストを解決します。
- 時間枠の事前検証（保持期間・現在時刻）
- プレイリストURLの生成と取得（リトライ付き）
- M3U8（マスター → チャンクリスト）の解析とシーケンス番号の付与
"""

import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional
from urllib.parse import urlencode

import m3u8
import requests

from .auth import AuthSession
from .error_handler import PlaylistError, PlaylistErrorKind
from .station_catalog import Station
from .utils.base import LoggerMixin
from .utils.config_utils import RecorderConfig
from .utils.datetime_utils import format_radiko_time, jst_from_epoch, parse_radiko_time, to_epoch
from .utils.network_utils import (
    RADIKO_APP_HEADERS, backoff_delay, create_radiko_session, deadline_passed, request_timeout
)

MEDIA_SEQUENCE_TAG = '#EXT-X-MEDIA-SEQUENCE:'


@dataclass(frozen=True)
class TimeWindow:
    """録音対象の時間枠 [start, start + duration)"""
    start: int            # epoch 秒
    duration_minutes: int

    def __post_init__(self):
        if self.duration_minutes <= 0:
            raise ValueError(f"録音時間は正の値である必要があります: {self.duration_minutes}")

    @classmethod
    def from_radiko_time(cls, start_time: str, duration_minutes: int) -> 'TimeWindow':
        """'YYYYMMDDHHMMSS'（日本時間）から生成"""
        return cls(start=to_epoch(parse_radiko_time(start_time)),
                   duration_minutes=duration_minutes)

    @property
    def duration_seconds(self) -> int:
        return self.duration_minutes * 60

    @property
    def end(self) -> int:
        return self.start + self.duration_seconds

    def __str__(self) -> str:
        return (f"{jst_from_epoch(self.start):%Y-%m-%d %H:%M:%S} - "
                f"{jst_from_epoch(self.end):%Y-%m-%d %H:%M:%S} JST")


@dataclass(frozen=True)
class PlaylistEntry:
    """プレイリストの1セグメント"""
    sequence: int
    url: str
    duration: float  # 秒


class PlaylistResolver(LoggerMixin):
    """タイムフリープレイリスト解決クラス"""

    TIMEFREE_URL = "https://radiko.jp/v2/api/ts/playlist.m3u8"
    MAX_PLAYLIST_DEPTH = 3

    def __init__(self, config: Optional[RecorderConfig] = None,
                 session: Optional[requests.Session] = None,
                 clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], None] = time.sleep):
        super().__init__()
        self.config = config or RecorderConfig()
        self.session = session or create_radiko_session()
        self.clock = clock
        self.sleep = sleep

    def validate_window(self, window: TimeWindow) -> None:
        """時間枠が保持期間内かを検証（ネットワークアクセスなし）

        Raises:
            PlaylistError: OUT_OF_RANGE
        """
        now = self.clock()
        earliest = now - self.config.timeshift_days * 24 * 3600
        if window.start < earliest:
            raise PlaylistError(
                PlaylistErrorKind.OUT_OF_RANGE,
                f"開始時刻が保持期間（{self.config.timeshift_days}日）より前です: {window}",
                context={'earliest': earliest, 'start': window.start})
        if window.end > now:
            raise PlaylistError(
                PlaylistErrorKind.OUT_OF_RANGE,
                f"終了時刻が現在時刻より後です: {window}",
                context={'now': now, 'end': window.end})

    def build_playlist_url(self, station: Station, window: TimeWindow) -> str:
        """タイムフリーM3U8 URL生成"""
        params = {
            'station_id': station.id,
            'l': '15',
            'ft': format_radiko_time(window.start),
            'to': format_radiko_time(window.end),
        }
        return f"{self.TIMEFREE_URL}?{urlencode(params)}"

    def resolve(self, station: Station, session: AuthSession, window: TimeWindow,
                deadline: Optional[float] = None) -> List[PlaylistEntry]:
        """時間枠をカバーするセグメント一覧を取得

        Returns:
            List[PlaylistEntry]: シーケンス順のセグメント一覧

        Raises:
            PlaylistError: OUT_OF_RANGE / NETWORK / EMPTY / MALFORMED / REJECTED
        """
        self.validate_window(window)

        url = self.build_playlist_url(station, window)
        headers = dict(RADIKO_APP_HEADERS)
        headers.update(session.headers())
        self.logger.info(f"プレイリスト取得: {station.id} {window}")

        playlist = self._load_media_playlist(url, headers, deadline)
        entries = self._build_entries(playlist)

        if not entries:
            raise PlaylistError(PlaylistErrorKind.EMPTY,
                                f"プレイリストにセグメントがありません: {station.id} {window}")

        self._check_coverage(entries, window, playlist.target_duration)
        self.logger.info(f"プレイリスト解析完了: {len(entries)}セグメント "
                         f"(seq {entries[0].sequence}-{entries[-1].sequence})")
        return entries

    def _load_media_playlist(self, url: str, headers: Dict[str, str],
                             deadline: Optional[float]) -> m3u8.M3U8:
        """マスタープレイリストを辿ってセグメントを持つプレイリストを取得"""
        for _ in range(self.MAX_PLAYLIST_DEPTH):
            text = self._fetch_text(url, headers, deadline)
            playlist = self.parse_playlist(text, uri=url)

            if playlist.is_variant:
                # 最高品質のプレイリスト（チャンクリスト）を選択
                best = max(playlist.playlists, key=lambda p: p.stream_info.bandwidth or 0)
                url = best.absolute_uri
                self.logger.debug(f"chunklist URL: {url}")
                continue

            return playlist

        raise PlaylistError(PlaylistErrorKind.MALFORMED,
                            f"プレイリストの入れ子が深すぎます（{self.MAX_PLAYLIST_DEPTH}段超）")

    def _fetch_text(self, url: str, headers: Dict[str, str],
                    deadline: Optional[float]) -> str:
        max_attempts = self.config.playlist_max_attempts
        for attempt in range(1, max_attempts + 1):
            try:
                response = self.session.get(
                    url,
                    headers=headers,
                    timeout=request_timeout(self.config.request_timeout, deadline),
                )
            except requests.RequestException as e:
                reason = str(e)
            else:
                status = response.status_code
                if status == 200:
                    return response.text
                if 400 <= status < 500:
                    raise PlaylistError(PlaylistErrorKind.REJECTED,
                                        f"プレイリスト取得が拒否されました: HTTP {status}",
                                        context={'url': url, 'status': status})
                reason = f"HTTP {status}"

            self.logger.warning(f"プレイリスト取得エラー (試行 {attempt}/{max_attempts}): {reason}")
            if attempt == max_attempts or deadline_passed(deadline):
                raise PlaylistError(PlaylistErrorKind.NETWORK,
                                    f"プレイリストの取得に失敗しました: {reason}",
                                    context={'url': url})
            self.sleep(backoff_delay(self.config.playlist_backoff, attempt))

        raise PlaylistError(PlaylistErrorKind.NETWORK, "プレイリストの取得に失敗しました")

    @staticmethod
    def parse_playlist(text: str, uri: Optional[str] = None) -> m3u8.M3U8:
        """M3U8テキストを解析

        シーケンス番号は EXT-X-MEDIA-SEQUENCE（無ければ0）+ 解析順。
        セグメント開始後に EXT-X-MEDIA-SEQUENCE が再宣言された場合、
        その値は次のセグメントの解析順の番号と一致しなければならない。

        Args:
            text: プレイリスト本文
            uri: 相対URL解決の基準となるプレイリストURL

        Raises:
            PlaylistError: MALFORMED
        """
        lines = [line.strip() for line in (text or '').splitlines() if line.strip()]
        if not lines or lines[0] != '#EXTM3U':
            raise PlaylistError(PlaylistErrorKind.MALFORMED,
                                "M3U8ヘッダー(#EXTM3U)がありません",
                                context={'head': (text or '')[:100]})

        try:
            playlist = m3u8.loads(text, uri=uri, custom_tags_parser=_check_media_sequence)
        except (ValueError, m3u8.ParseError) as e:
            raise PlaylistError(PlaylistErrorKind.MALFORMED,
                                f"プレイリストの解析に失敗しました: {e}") from e

        for segment in playlist.segments:
            if segment.uri is None:
                raise PlaylistError(PlaylistErrorKind.MALFORMED, "URLのないエントリで終了しています")
            if segment.duration is None:
                raise PlaylistError(PlaylistErrorKind.MALFORMED,
                                    f"長さ(#EXTINF)のないセグメントがあります: {segment.uri}")

        # タグに続かないURL行は m3u8 が読み飛ばすため件数で検出する
        uri_lines = [line for line in lines if not line.startswith('#')]
        if len(uri_lines) != len(playlist.segments) + len(playlist.playlists):
            raise PlaylistError(PlaylistErrorKind.MALFORMED,
                                "長さ(#EXTINF)のないセグメントがあります",
                                context={'lines': len(uri_lines),
                                         'entries': len(playlist.segments) + len(playlist.playlists)})
        return playlist

    @staticmethod
    def _build_entries(playlist: m3u8.M3U8) -> List[PlaylistEntry]:
        """セグメントURLを絶対URLにしてエントリ一覧を作成"""
        base = playlist.media_sequence or 0
        return [
            PlaylistEntry(
                sequence=base + index,
                url=segment.absolute_uri,
                duration=segment.duration,
            )
            for index, segment in enumerate(playlist.segments)
        ]

    def _check_coverage(self, entries: List[PlaylistEntry], window: TimeWindow,
                        target_duration: Optional[float]) -> None:
        total = sum(entry.duration for entry in entries)
        tolerance = target_duration or max(entry.duration for entry in entries)
        if abs(total - window.duration_seconds) > tolerance:
            self.logger.warning(
                f"プレイリストの合計長が時間枠と一致しません: "
                f"{total:.1f}秒 / 要求 {window.duration_seconds}秒")

    def close(self):
        self.session.close()


def _check_media_sequence(line, lineno, data, state) -> bool:
    """セグメント開始後の EXT-X-MEDIA-SEQUENCE 再宣言を検証（m3u8 のカスタムタグ解析）

    Returns:
        bool: True なら m3u8 側の解析を行わない（基準のシーケンス番号を保持）
    """
    if not line.startswith(MEDIA_SEQUENCE_TAG) or not data['segments']:
        return False

    value = line[len(MEDIA_SEQUENCE_TAG):].strip()
    try:
        declared = int(value)
    except ValueError as e:
        raise PlaylistError(PlaylistErrorKind.MALFORMED,
                            f"タグの値が数値ではありません: {line}") from e

    expected = (data['media_sequence'] or 0) + len(data['segments'])
    if declared != expected:
        raise PlaylistError(PlaylistErrorKind.MALFORMED,
                            f"シーケンス番号が一致しません: 宣言={declared}, 解析順={expected}",
                            context={'line': lineno})
    return True
