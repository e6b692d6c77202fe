"""
外部エンコーダ（FFmpeg）モジュール

連結したセグメントのバイト列を FFmpeg の標準入力へ流し込み、出力ファイルを生成します。
- 出力拡張子からコーデックを決定
- async with のスコープで子プロセスの終了・回収を保証（孤児・ゾンビを残さない）
- MP3 出力時の ID3 メタデータ埋め込み
"""

import asyncio
from collections import deque
from pathlib import Path
from typing import Deque, Dict, List, Optional

from mutagen import MutagenError
from mutagen.id3 import ID3, ID3NoHeaderError, TALB, TCON, TDRC, TIT2, TPE1

from .error_handler import EncoderError, EncoderErrorKind
from .logging_config import get_logger
from .utils.base import LoggerMixin
from .utils.config_utils import RecorderConfig

# 出力拡張子ごとのコーデック指定
CODEC_ARGS: Dict[str, List[str]] = {
    '.aac': ['-acodec', 'copy'],
    '.m4a': ['-acodec', 'copy', '-bsf:a', 'aac_adtstoasc'],
    '.mp3': ['-acodec', 'libmp3lame', '-b:a', '256k'],
    '.wav': ['-acodec', 'pcm_s16le'],
}
STDERR_TAIL_LINES = 20

logger = get_logger(__name__)


class FFmpegEncoder(LoggerMixin):
    """FFmpeg 子プロセスのラッパー

    Usage:
        async with FFmpegEncoder(output_path, config) as encoder:
            await encoder.write(data)
            await encoder.finish()
    """

    def __init__(self, output_path: str, config: Optional[RecorderConfig] = None):
        super().__init__()
        self.output_path = Path(output_path)
        self.config = config or RecorderConfig()
        self.process: Optional[asyncio.subprocess.Process] = None
        self._stderr_tail: Deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self._stderr_task: Optional[asyncio.Task] = None

    def build_command(self) -> List[str]:
        """FFmpeg コマンドライン（入力は標準入力）"""
        codec_args = CODEC_ARGS.get(self.output_path.suffix.lower(), ['-acodec', 'copy'])
        return [
            self.config.ffmpeg_path,
            '-hide_banner',
            '-loglevel', 'error',
            '-i', 'pipe:0',
            *codec_args,
            '-y',
            str(self.output_path),
        ]

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode if self.process else None

    async def __aenter__(self) -> 'FFmpegEncoder':
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        # finish() 済みなら回収済みのため abort() は stderr の回収のみ行う
        await self.abort()

    async def start(self):
        """エンコーダを起動

        Raises:
            EncoderError: SPAWN_FAILED
        """
        command = self.build_command()
        self.logger.info(f"エンコーダ起動: {' '.join(command)}")
        try:
            self.output_path.parent.mkdir(parents=True, exist_ok=True)
            self.process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EncoderError(EncoderErrorKind.SPAWN_FAILED,
                               f"エンコーダを起動できません ({command[0]} -> {self.output_path}): {e}"
                               ) from e
        self._stderr_task = asyncio.ensure_future(self._drain_stderr())

    async def _drain_stderr(self):
        # パイプが詰まってエンコーダが止まらないよう常に読み捨てる
        while True:
            line = await self.process.stderr.readline()
            if not line:
                break
            text = line.decode('utf-8', errors='replace').rstrip()
            self._stderr_tail.append(text)
            self.logger.debug(f"encoder: {text}")

    async def write(self, data: bytes):
        """標準入力へ書き込み

        Raises:
            EncoderError: PIPE_CLOSED（エンコーダが入力を閉じた・終了した）
        """
        if self.process is None or self.process.stdin is None:
            raise EncoderError(EncoderErrorKind.PIPE_CLOSED, "エンコーダが起動していません")
        try:
            self.process.stdin.write(data)
            await self.process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise EncoderError(EncoderErrorKind.PIPE_CLOSED,
                               f"エンコーダの入力が閉じられました: {e}{self._stderr_summary()}") from e

    async def finish(self) -> int:
        """入力を閉じて終了を待つ（正常系）

        Raises:
            EncoderError: NON_ZERO_EXIT
        """
        self._close_stdin()
        try:
            returncode = await self.process.wait()
        finally:
            await self._join_stderr()

        if returncode != 0:
            raise EncoderError(EncoderErrorKind.NON_ZERO_EXIT,
                               f"エンコーダが終了コード {returncode} で終了しました{self._stderr_summary()}",
                               returncode=returncode)
        self.logger.info(f"エンコード完了: {self.output_path}")
        return returncode

    async def abort(self):
        """異常系の後始末: 入力を閉じ、終了させ、回収する"""
        if self.process is None:
            return
        self._close_stdin()
        if self.process.returncode is None:
            self.logger.warning(f"エンコーダを停止します (pid={self.process.pid})")
            try:
                self.process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(self.process.wait(), self.config.encoder_shutdown_timeout)
            except asyncio.TimeoutError:
                self.logger.warning(f"エンコーダが応答しないため強制終了します (pid={self.process.pid})")
                try:
                    self.process.kill()
                except ProcessLookupError:
                    pass
                await self.process.wait()
        await self._join_stderr()

    def _close_stdin(self):
        stdin = self.process.stdin if self.process else None
        if stdin is not None and not stdin.is_closing():
            try:
                stdin.close()
            except (BrokenPipeError, ConnectionResetError):
                pass

    async def _join_stderr(self):
        if self._stderr_task is not None:
            try:
                await asyncio.wait_for(self._stderr_task, self.config.encoder_shutdown_timeout)
            except asyncio.TimeoutError:
                self._stderr_task.cancel()
            self._stderr_task = None

    def _stderr_summary(self) -> str:
        if not self._stderr_tail:
            return ""
        return " / " + " | ".join(self._stderr_tail)


def embed_metadata(file_path: str, title: str, station_name: str, date: str) -> bool:
    """ID3メタデータの埋め込み（MP3のみ）

    Metadata Fields:
        - TIT2: 番組タイトル
        - TPE1: 放送局名
        - TALB: 放送局名
        - TDRC: 放送日
        - TCON: ジャンル (Radio)

    Returns:
        bool: 埋め込みを行った場合 True
    """
    if not str(file_path).lower().endswith('.mp3'):
        logger.info("MP3以外のファイル形式のため、メタデータ埋め込みをスキップ")
        return False

    try:
        try:
            tags = ID3(file_path)
        except ID3NoHeaderError:
            tags = ID3()

        tags.add(TIT2(encoding=3, text=title))
        tags.add(TPE1(encoding=3, text=station_name))
        tags.add(TALB(encoding=3, text=station_name))
        tags.add(TDRC(encoding=3, text=date))
        tags.add(TCON(encoding=3, text='Radio'))
        tags.save(file_path)
    except MutagenError as e:
        logger.warning(f"メタデータ埋め込みエラー: {e}")
        return False

    logger.info(f"メタデータ埋め込み完了: {file_path}")
    return True
