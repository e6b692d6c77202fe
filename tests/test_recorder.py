"""
RecordingOrchestrator統合テスト

実際の認証クライアント・プレイリスト解決（HTTP はスタブ）と、
順序保証付き取得・実プロセスのエンコーダ代替を組み合わせて録音ジョブ全体を確認する。
"""

import asyncio
import unittest
from unittest.mock import MagicMock

import psutil
from mutagen.id3 import ID3

from radiko_recorder.auth import RadikoAuthClient
from radiko_recorder.encoder import FFmpegEncoder
from radiko_recorder.error_handler import (
    AuthError, AuthErrorKind, EncoderError, EncoderErrorKind, JobError, JobErrorKind,
    PlaylistError, PlaylistErrorKind, SegmentError, SegmentErrorKind
)
from radiko_recorder.job import JobStatus, RecordingJob
from radiko_recorder.playlist import PlaylistResolver, TimeWindow
from radiko_recorder.recorder import RecordingOrchestrator
from radiko_recorder.utils.config_utils import RecorderConfig
from tests.utils.test_environment import (
    AUTH_TOKEN, TEST_STATION, FailingEncoder, FakeClock, FakeSegmentFetcher, PassthroughEncoder,
    RadikoServiceStub, TemporaryTestEnvironment, build_media_playlist, jst_epoch,
    segment_payload
)

SEQUENCES = list(range(100, 110))

FULL_HISTORY = (
    JobStatus.PENDING,
    JobStatus.AUTHENTICATING,
    JobStatus.RESOLVING_PLAYLIST,
    JobStatus.FETCHING,
    JobStatus.FINALIZING,
    JobStatus.COMPLETED,
)


class RecordingOrchestratorTestBase(unittest.TestCase):

    def setUp(self):
        self.temp_env = TemporaryTestEnvironment()
        self.temp_env.__enter__()
        self.clock = FakeClock(jst_epoch("20241121000000"))
        self.transitions = []
        self.progress = []
        self.encoders = []

    def tearDown(self):
        self.temp_env.__exit__(None, None, None)

    def build(self, config=None, fetcher=None, encoder_class=PassthroughEncoder,
              tokens=None, media_playlist=None):
        self.config = config or RecorderConfig(encoder_shutdown_timeout=1.0)
        self.service = RadikoServiceStub(
            media_playlist or build_media_playlist(10, duration=300.0, media_sequence=100),
            tokens=tokens)
        session = MagicMock()
        session.get.side_effect = self.service
        self.fetcher = fetcher or FakeSegmentFetcher(self.config)

        def encoder_factory(path):
            encoder = encoder_class(path, self.config)
            self.encoders.append(encoder)
            return encoder

        no_wait = lambda seconds: None
        self.orchestrator = RecordingOrchestrator(
            config=self.config,
            auth_client=RadikoAuthClient(self.config, session=session, clock=self.clock, sleep=no_wait),
            resolver=PlaylistResolver(self.config, session=session, clock=self.clock, sleep=no_wait),
            fetcher=self.fetcher,
            encoder_factory=encoder_factory,
            clock=self.clock,
            on_transition=lambda job: self.transitions.append(job.status),
            on_progress=lambda done, total: self.progress.append((done, total)),
        )
        return self.orchestrator

    def new_job(self, name="FMT_20241120120000.aac", start="20241120120000", minutes=50):
        return RecordingJob(station=TEST_STATION,
                            window=TimeWindow.from_radiko_time(start, minutes),
                            output_target=str(self.temp_env.output_path(name)))

    def expected_bytes(self, sequences):
        return b"".join(segment_payload(s) for s in sequences)


class TestRecordingSuccess(RecordingOrchestratorTestBase):
    """正常系テスト"""

    def test_01_50分の録音がプレイリスト順で完了(self):
        orchestrator = self.build()
        job = self.new_job()

        result = asyncio.run(orchestrator.run(job))

        self.assertTrue(result.success, result.error)
        self.assertEqual(result.job.history, FULL_HISTORY)
        self.assertEqual(self.transitions, list(FULL_HISTORY[1:]))
        self.assertEqual(result.segments_total, 10)
        self.assertEqual(result.segments_written, 10)
        self.assertEqual(result.reauth_count, 0)

        content = self.temp_env.output_path("FMT_20241120120000.aac").read_bytes()
        self.assertEqual(content, self.expected_bytes(SEQUENCES))
        self.assertEqual(result.bytes_written, len(content))
        self.assertEqual(self.progress[-1], (10, 10))

        # 認証は1回のみ、全セグメントに同じトークン
        self.assertEqual(self.service.auth_count, 1)
        self.assertEqual(result.job.session.token, AUTH_TOKEN)
        self.assertEqual({h['X-Radiko-AuthToken'] for h in self.fetcher.request_headers.values()},
                         {AUTH_TOKEN})

    def test_02_有効期限切れで1回だけ再認証し続きから取得(self):
        config = RecorderConfig(prefetch=0, session_ttl=3600, encoder_shutdown_timeout=1.0)

        def expire_after_second(entry):
            if entry.sequence == 101:
                self.clock.advance(3600)

        fetcher = FakeSegmentFetcher(config, on_fetch=expire_after_second)
        orchestrator = self.build(config=config, fetcher=fetcher,
                                  tokens=["first_token_00000", "second_token_0000"])

        result = asyncio.run(orchestrator.run(self.new_job()))

        self.assertTrue(result.success, result.error)
        self.assertEqual(result.reauth_count, 1)
        self.assertEqual(self.service.auth_count, 2)
        self.assertEqual(fetcher.fetched, SEQUENCES)
        tokens = [fetcher.request_headers[s]['X-Radiko-AuthToken'] for s in SEQUENCES]
        self.assertEqual(tokens, ["first_token_00000"] * 2 + ["second_token_0000"] * 8)
        self.assertEqual(result.job.session.token, "second_token_0000")
        self.assertEqual(self.temp_env.output_path("FMT_20241120120000.aac").read_bytes(),
                         self.expected_bytes(SEQUENCES))

    def test_03_MP3出力にはメタデータを埋め込む(self):
        orchestrator = self.build()

        result = asyncio.run(orchestrator.run(self.new_job(name="show.mp3")))

        self.assertTrue(result.success, result.error)
        tags = ID3(str(self.temp_env.output_path("show.mp3")))
        self.assertEqual(str(tags['TPE1']), "TOKYO FM")
        self.assertEqual(str(tags['TIT2']), "TOKYO FM 2024-11-20 12:00")

    def test_04_制限時間は録音時間と安全マージンの和(self):
        orchestrator = self.build(config=RecorderConfig(safety_margin=120))
        self.assertEqual(orchestrator.job_deadline_seconds(self.new_job(minutes=50)), 3120)


class TestRecordingFailure(RecordingOrchestratorTestBase):
    """異常系テスト"""

    def assertEncodersReaped(self):
        for encoder in self.encoders:
            self.assertIsNotNone(encoder.returncode)
            self.assertFalse(psutil.pid_exists(encoder.pid))

    def test_01_制限時間超過でエンコーダを終了しTIMEOUT(self):
        fetcher = FakeSegmentFetcher(RecorderConfig(), hang_sequence=103)
        orchestrator = self.build(fetcher=fetcher)

        result = asyncio.run(orchestrator.run(self.new_job(), deadline_seconds=1.0))

        self.assertFalse(result.success)
        self.assertIsInstance(result.error, JobError)
        self.assertEqual(result.error.kind, JobErrorKind.TIMEOUT)
        self.assertEqual(result.job.history[-2:], (JobStatus.FETCHING, JobStatus.FAILED))
        self.assertEqual(result.segments_written, 3)
        self.assertEqual(len(self.encoders), 1)
        self.assertEncodersReaped()

    def test_02_セグメント消失で中断し後続を書き込まない(self):
        fetcher = FakeSegmentFetcher(RecorderConfig(), gone_sequence=104)
        orchestrator = self.build(fetcher=fetcher)

        result = asyncio.run(orchestrator.run(self.new_job()))

        self.assertFalse(result.success)
        self.assertIsInstance(result.error, SegmentError)
        self.assertEqual(result.error.kind, SegmentErrorKind.GONE)
        self.assertEqual(result.error.sequence, 104)
        self.assertEqual(result.segments_written, 4)
        self.assertLessEqual(max(fetcher.fetched), 104 + self.config.prefetch)
        self.assertEqual(result.bytes_written, len(self.expected_bytes(range(100, 104))))
        self.assertEncodersReaped()

    def test_03_認証失敗ではエンコーダを起動しない(self):
        orchestrator = self.build()
        original = self.service

        def out_of_area(url, headers=None, timeout=None, **kwargs):
            response = original(url, headers=headers, timeout=timeout)
            if url == RadikoAuthClient.AUTH2_URL:
                response.text = "OUT"
            return response

        self.orchestrator.auth_client.session.get.side_effect = out_of_area

        result = asyncio.run(orchestrator.run(self.new_job()))

        self.assertFalse(result.success)
        self.assertIsInstance(result.error, AuthError)
        self.assertEqual(result.error.kind, AuthErrorKind.REJECTED)
        self.assertEqual(result.job.history,
                         (JobStatus.PENDING, JobStatus.AUTHENTICATING, JobStatus.FAILED))
        self.assertEqual(self.encoders, [])

    def test_04_保持期間外はプレイリストを要求せずに失敗(self):
        orchestrator = self.build()

        result = asyncio.run(orchestrator.run(self.new_job(start="20241101120000")))

        self.assertFalse(result.success)
        self.assertIsInstance(result.error, PlaylistError)
        self.assertEqual(result.error.kind, PlaylistErrorKind.OUT_OF_RANGE)
        self.assertEqual(result.job.history[-2:],
                         (JobStatus.RESOLVING_PLAYLIST, JobStatus.FAILED))
        self.assertFalse(any(url.startswith(PlaylistResolver.TIMEFREE_URL)
                             for url in self.service.requested_urls))
        self.assertEqual(self.encoders, [])

    def test_05_エンコーダの異常終了はFinalizingで失敗(self):
        orchestrator = self.build(encoder_class=FailingEncoder)

        result = asyncio.run(orchestrator.run(self.new_job()))

        self.assertFalse(result.success)
        self.assertIsInstance(result.error, EncoderError)
        self.assertEqual(result.error.kind, EncoderErrorKind.NON_ZERO_EXIT)
        self.assertEqual(result.job.history[-2:], (JobStatus.FINALIZING, JobStatus.FAILED))
        self.assertEqual(result.segments_written, 10)
        self.assertEncodersReaped()

    def test_06_エンコーダを起動できなければSPAWN_FAILED(self):
        config = RecorderConfig(ffmpeg_path=str(self.temp_env.temp_dir / "no-such-ffmpeg"))
        orchestrator = self.build(config=config, encoder_class=FFmpegEncoder)

        result = asyncio.run(orchestrator.run(self.new_job()))

        self.assertFalse(result.success)
        self.assertEqual(result.error.kind, EncoderErrorKind.SPAWN_FAILED)
        self.assertEqual(self.fetcher.fetched, [])

    def test_07_出力先を作成できなければFetchingから失敗(self):
        blocker = self.temp_env.temp_dir / "blocker"
        blocker.write_bytes(b"")
        orchestrator = self.build()
        job = RecordingJob(station=TEST_STATION,
                           window=TimeWindow.from_radiko_time("20241120120000", 50),
                           output_target=str(blocker / "sub" / "FMT.aac"))

        result = asyncio.run(orchestrator.run(job))

        self.assertFalse(result.success)
        self.assertIsInstance(result.error, EncoderError)
        self.assertEqual(result.error.kind, EncoderErrorKind.SPAWN_FAILED)
        self.assertEqual(result.job.history[-2:], (JobStatus.FETCHING, JobStatus.FAILED))
        self.assertEqual(self.fetcher.fetched, [])


if __name__ == '__main__':
    unittest.main()
