"""
セグメント取得モジュール

プレイリストのセグメントをネットワークから取得し、プレイリスト順にシンクへ書き込みます。
- セグメント単位のリトライ（指数バックオフ、5xx・通信エラーのみ）
- 4xx はリトライせず GONE として即中断
- 先読みは最大2セグメント。書き込みは単一のループで順序通りに直列化
"""

import asyncio
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Sequence

import aiohttp

from .error_handler import SegmentError, SegmentErrorKind
from .playlist import PlaylistEntry
from .utils.base import LoggerMixin
from .utils.config_utils import RecorderConfig
from .utils.network_utils import RADIKO_APP_HEADERS, STANDARD_HEADERS, backoff_delay

PrepareCallback = Callable[[PlaylistEntry], Awaitable[Dict[str, str]]]
ProgressCallback = Callable[[int, int], None]


class SegmentFetcher(LoggerMixin):
    """セグメント取得クラス

    Usage:
        async with SegmentFetcher(config) as fetcher:
            await fetcher.fetch_all(entries, sink, prepare=headers_for)
    """

    def __init__(self, config: Optional[RecorderConfig] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        super().__init__()
        self.config = config or RecorderConfig()
        self.sleep = sleep
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> 'SegmentFetcher':
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def open(self):
        if self._session is None or self._session.closed:
            headers = dict(STANDARD_HEADERS)
            headers.update(RADIKO_APP_HEADERS)
            self._session = aiohttp.ClientSession(
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.config.segment_timeout),
                connector=aiohttp.TCPConnector(limit=self.config.prefetch + 1),
            )

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def fetch(self, entry: PlaylistEntry,
                    headers: Optional[Dict[str, str]] = None) -> bytes:
        """単一セグメントを取得

        Raises:
            SegmentError: GONE（4xx）/ NETWORK（リトライ上限到達）
        """
        await self.open()
        max_attempts = self.config.segment_max_attempts

        for attempt in range(1, max_attempts + 1):
            try:
                async with self._session.get(entry.url, headers=headers) as response:
                    if response.status == 200:
                        return await response.read()
                    if 400 <= response.status < 500:
                        raise SegmentError(
                            SegmentErrorKind.GONE,
                            f"セグメント {entry.sequence} が取得できません: HTTP {response.status}",
                            sequence=entry.sequence, status=response.status,
                            context={'url': entry.url})
                    reason = f"HTTP {response.status}"
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                reason = f"{type(e).__name__}: {e}"

            self.logger.warning(
                f"セグメント {entry.sequence} 取得エラー (試行 {attempt}/{max_attempts}): {reason}")
            if attempt == max_attempts:
                raise SegmentError(
                    SegmentErrorKind.NETWORK,
                    f"セグメント {entry.sequence} のダウンロードに失敗しました: {reason}",
                    sequence=entry.sequence, context={'url': entry.url})
            await self.sleep(backoff_delay(self.config.segment_backoff, attempt))

        raise SegmentError(SegmentErrorKind.NETWORK,
                           f"セグメント {entry.sequence} のダウンロードに失敗しました",
                           sequence=entry.sequence)

    async def fetch_all(self, entries: Sequence[PlaylistEntry], sink: Any,
                        prepare: Optional[PrepareCallback] = None,
                        on_progress: Optional[ProgressCallback] = None) -> int:
        """全セグメントをプレイリスト順にシンクへ書き込む

        書き込み中のセグメントに加えて最大 prefetch 個のセグメントを並行取得する。
        prepare はセグメントの取得開始直前にプレイリスト順で呼ばれ、リクエストヘッダーを返す。

        Args:
            entries: プレイリスト順のセグメント一覧
            sink: async write(data: bytes) を持つ書き込み先
            prepare: セグメントごとのヘッダー生成（認証期限の確認を兼ねる）
            on_progress: 書き込み完了ごとに (完了数, 総数) で呼ばれる

        Returns:
            int: 書き込んだバイト数
        """
        total = len(entries)
        window = self.config.prefetch + 1
        pending: Deque[asyncio.Task] = deque()
        next_index = 0
        written = 0
        bytes_written = 0

        async def schedule():
            nonlocal next_index
            entry = entries[next_index]
            next_index += 1
            headers = await prepare(entry) if prepare else None
            pending.append(asyncio.ensure_future(self.fetch(entry, headers)))

        try:
            while written < total:
                while next_index < total and len(pending) < window:
                    await schedule()

                data = await pending.popleft()
                await sink.write(data)
                written += 1
                bytes_written += len(data)

                if on_progress:
                    on_progress(written, total)
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        self.logger.info(f"セグメント書き込み完了: {written}/{total} ({bytes_written / 1024 / 1024:.1f}MB)")
        return bytes_written
