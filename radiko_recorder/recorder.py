"""
録音オーケストレーターモジュール

認証 → プレイリスト解決 → セグメント取得 → 外部エンコーダの順に処理を進め、
録音ジョブのライフサイクル（開始・進捗・完了・中断）と全体の締め切りを管理します。
"""

import asyncio
import time
from typing import Callable, Optional

from .auth import RadikoAuthClient
from .encoder import FFmpegEncoder, embed_metadata
from .error_handler import JobError, JobErrorKind, RecorderError, handle_error
from .job import JobStatus, RecordingJob, RecordingResult, transition
from .playlist import PlaylistEntry, PlaylistResolver
from .segment_fetcher import ProgressCallback, SegmentFetcher
from .utils.base import LoggerMixin
from .utils.config_utils import RecorderConfig
from .utils.datetime_utils import jst_from_epoch

EncoderFactory = Callable[[str], FFmpegEncoder]
TransitionCallback = Callable[[RecordingJob], None]


class _CountingSink:
    """エンコーダへの書き込みを数える薄いラッパー"""

    def __init__(self, encoder: FFmpegEncoder):
        self.encoder = encoder
        self.bytes_written = 0

    async def write(self, data: bytes):
        await self.encoder.write(data)
        self.bytes_written += len(data)


class RecordingOrchestrator(LoggerMixin):
    """録音ジョブの実行管理クラス"""

    def __init__(self,
                 config: Optional[RecorderConfig] = None,
                 auth_client: Optional[RadikoAuthClient] = None,
                 resolver: Optional[PlaylistResolver] = None,
                 fetcher: Optional[SegmentFetcher] = None,
                 encoder_factory: Optional[EncoderFactory] = None,
                 clock: Callable[[], float] = time.time,
                 on_transition: Optional[TransitionCallback] = None,
                 on_progress: Optional[ProgressCallback] = None):
        super().__init__()
        self.config = config or RecorderConfig()
        self.auth_client = auth_client or RadikoAuthClient(self.config, clock=clock)
        self.resolver = resolver or PlaylistResolver(self.config, clock=clock)
        self.fetcher = fetcher or SegmentFetcher(self.config)
        self.encoder_factory = encoder_factory or self._default_encoder
        self.clock = clock
        self.on_transition = on_transition
        self.on_progress = on_progress

        self._job: Optional[RecordingJob] = None
        self._deadline: Optional[float] = None
        self._segments_total = 0
        self._segments_written = 0
        self._reauth_count = 0
        self._sink: Optional[_CountingSink] = None

    def _default_encoder(self, output_path: str) -> FFmpegEncoder:
        return FFmpegEncoder(output_path, self.config)

    def job_deadline_seconds(self, job: RecordingJob) -> float:
        """録音時間 + 安全マージン"""
        return job.window.duration_seconds + self.config.safety_margin

    async def run(self, job: RecordingJob,
                  deadline_seconds: Optional[float] = None) -> RecordingResult:
        """録音ジョブを実行

        失敗は例外ではなく、Failed 状態と原因エラーを持つ結果として返す。
        RecorderError 以外の予期しない例外は後始末の後にそのまま送出される。

        Args:
            job: Pending 状態のジョブ
            deadline_seconds: 全体の制限時間（省略時は録音時間 + 安全マージン）

        Returns:
            RecordingResult: 録音結果
        """
        timeout = deadline_seconds if deadline_seconds is not None else self.job_deadline_seconds(job)
        started = time.monotonic()
        self._job = job
        self._deadline = started + timeout
        self._segments_total = 0
        self._segments_written = 0
        self._reauth_count = 0
        self._sink = None

        self.logger.info(f"録音開始: {job.station.id} ({job.station.name}) {job.window} "
                         f"-> {job.output_target} (制限 {timeout:.0f}秒)")

        try:
            await asyncio.wait_for(self._execute(), timeout)
        except asyncio.TimeoutError:
            self._release_blocking_sessions()
            self._fail(JobError(JobErrorKind.TIMEOUT,
                                f"制限時間 {timeout:.0f}秒 を超過しました",
                                context={'segments_written': self._segments_written}))
        except RecorderError as e:
            self._fail(e)

        elapsed = time.monotonic() - started
        result = RecordingResult(
            job=self._job,
            output_path=job.output_target,
            bytes_written=self._sink.bytes_written if self._sink else 0,
            segments_total=self._segments_total,
            segments_written=self._segments_written,
            reauth_count=self._reauth_count,
            elapsed_seconds=elapsed,
        )

        if result.success:
            self.logger.info(f"録音完了: {job.output_target} "
                             f"({result.bytes_written / 1024 / 1024:.1f}MB, {elapsed:.1f}秒)")
        else:
            self.logger.error(f"録音失敗: {job.output_target} "
                              f"({result.segments_written}/{result.segments_total} セグメント)")
        return result

    async def _execute(self):
        job = self._job

        self._advance(JobStatus.AUTHENTICATING)
        session = await asyncio.to_thread(self.auth_client.authenticate, job.session, self._deadline)
        self._job = self._job.with_session(session)
        if session.area_id != job.station.area_id:
            self.logger.warning(f"認証エリア {session.area_id} と放送局のエリア "
                                f"{job.station.area_id} が異なります")

        self._advance(JobStatus.RESOLVING_PLAYLIST)
        entries = await asyncio.to_thread(
            self.resolver.resolve, job.station, session, job.window, self._deadline)
        self._segments_total = len(entries)

        self._advance(JobStatus.FETCHING)
        async with self.encoder_factory(job.output_target) as encoder:
            self._sink = _CountingSink(encoder)
            async with self.fetcher:
                await self.fetcher.fetch_all(entries, self._sink,
                                             prepare=self._prepare_segment,
                                             on_progress=self._progress)

            self._advance(JobStatus.FINALIZING)
            await encoder.finish()

        if self.config.embed_metadata:
            start = jst_from_epoch(job.window.start)
            embed_metadata(job.output_target,
                           title=f"{job.station.name} {start:%Y-%m-%d %H:%M}",
                           station_name=job.station.name,
                           date=start.strftime('%Y-%m-%d'))

        self._advance(JobStatus.COMPLETED)

    async def _prepare_segment(self, entry: PlaylistEntry):
        """セグメント取得直前に認証期限を確認し、必要なら再認証する"""
        session = self._job.session
        if session.is_expired(self.clock()):
            self.logger.info(f"セッション期限切れのため再認証します (seq={entry.sequence})")
            session = await asyncio.to_thread(self.auth_client.authenticate, session, self._deadline)
            self._job = self._job.with_session(session)
            self._reauth_count += 1
        return session.headers()

    def _progress(self, done: int, total: int):
        self._segments_written = done
        if self.on_progress:
            self.on_progress(done, total)

    def _advance(self, status: JobStatus):
        self._job = transition(self._job, status)
        self.logger.info(f"ジョブ状態: {status.value}")
        if self.on_transition:
            self.on_transition(self._job)

    def _fail(self, error: RecorderError):
        if self._job.status.is_terminal:
            # 原因エラーは最初の1つのみ保持する
            self.logger.warning(f"終了済みジョブへの追加エラー: {error}")
            return
        handle_error(error, self.logger, context={'status': self._job.status.value})
        self._job = transition(self._job, JobStatus.FAILED, error)
        if self.on_transition:
            self.on_transition(self._job)

    def _release_blocking_sessions(self):
        # ワーカースレッドで実行中のリクエストの接続を解放する
        for component in (self.auth_client, self.resolver):
            close = getattr(component, 'close', None)
            if close is not None:
                close()
