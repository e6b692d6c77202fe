"""
CLIインターフェースモジュール

このモジュールは録音エンジンのコマンドライン操作を提供します。
- 放送局リスト表示（--station-list）
- タイムフリー録音（放送局ID 開始時刻 録音分数）
"""

import argparse
import asyncio
import re
import sys
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

from tqdm import tqdm

from .error_handler import CatalogError, RecorderError, describe_error
from .job import RecordingJob
from .logging_config import setup_logging
from .playlist import TimeWindow
from .recorder import RecordingOrchestrator
from .station_catalog import StationCatalog
from .utils.base import LoggerMixin
from .utils.config_utils import ConfigManager, RecorderConfig

STATION_ID_PATTERN = re.compile(r"^[A-Z0-9-]+$")


class RadikoRecorderCLI(LoggerMixin):
    """CLIメインクラス"""

    VERSION = "1.0.0"

    def __init__(self,
                 catalog_factory: Optional[Callable[[RecorderConfig], StationCatalog]] = None,
                 orchestrator_factory: Optional[Callable[..., RecordingOrchestrator]] = None,
                 stdout=None, stderr=None):
        super().__init__()
        self.catalog_factory = catalog_factory or (
            lambda config: StationCatalog(config.area_id, timeout=config.request_timeout))
        self.orchestrator_factory = orchestrator_factory or RecordingOrchestrator
        self.stdout = stdout or sys.stdout
        self.stderr = stderr or sys.stderr

    def create_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog='radiko-recorder',
            description='Radiko タイムフリー録音',
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
使用例:
  radiko-recorder --station-list
  radiko-recorder FMT 20241120120000 50
  radiko-recorder --area-id JP27 --output show.mp3 OBC 20241120210000 30
"""
        )
        parser.add_argument('--version', action='version', version=f'radiko-recorder {self.VERSION}')
        parser.add_argument('-a', '--area-id', '--area_id', dest='area_id',
                            help='エリアID (例: JP13, JP27)')
        parser.add_argument('-s', '--station-list', action='store_true', help='放送局リストを表示する')
        parser.add_argument('--config', default='config.json', help='設定ファイルパス')
        parser.add_argument('-o', '--output', help='出力ファイルパス（拡張子で形式を決定）')
        parser.add_argument('-v', '--verbose', action='store_true', help='詳細ログを表示')
        parser.add_argument('station_id', nargs='?', help='放送局ID（録音時は必須）')
        parser.add_argument('start_time', nargs='?', help='録音開始時刻 YYYYMMDDHHMMSS（録音時は必須）')
        parser.add_argument('duration_minutes', nargs='?', type=int, default=60, help='録音時間（分）')
        return parser

    def run(self, args: Optional[List[str]] = None) -> int:
        parser = self.create_parser()
        parsed = parser.parse_args(args)

        try:
            config = ConfigManager(parsed.config).load_recorder_config()
            config = config.with_overrides(area_id=parsed.area_id)
        except RecorderError as e:
            self._error(describe_error(e))
            return 1

        setup_logging(log_level='DEBUG' if parsed.verbose else None,
                      log_dir=config.log_dir,
                      console_output=True if parsed.verbose else None)

        try:
            if parsed.station_list:
                return self._cmd_station_list(config)

            if not parsed.station_id or not parsed.start_time:
                self._error("放送局IDと開始時刻が必要です（--station-list 使用時を除く）")
                self._error(parser.format_usage().rstrip())
                return 1

            return self._cmd_record(parsed, config)

        except KeyboardInterrupt:
            self._error("\n操作がキャンセルされました")
            return 130

    def _cmd_station_list(self, config: RecorderConfig) -> int:
        catalog = self.catalog_factory(config)
        try:
            stations = catalog.list_stations()
        except CatalogError as e:
            self._error(f"Error: {describe_error(e)}")
            return 1

        for station in stations:
            print(station.describe(), file=self.stdout)
        return 0

    def _cmd_record(self, parsed: argparse.Namespace, config: RecorderConfig) -> int:
        station_id = parsed.station_id
        if not STATION_ID_PATTERN.match(station_id):
            self._error(f"Error: 不正な放送局IDです: {station_id}")
            return 1
        if parsed.duration_minutes <= 0:
            self._error("Error: 録音時間は正の値である必要があります")
            return 1
        try:
            window = TimeWindow.from_radiko_time(parsed.start_time, parsed.duration_minutes)
        except ValueError as e:
            self._error(f"Error: {e}")
            return 1

        try:
            station = self.catalog_factory(config).get_station(station_id)
        except CatalogError as e:
            self._error(f"Error: {describe_error(e)}")
            return 1
        if station is None:
            self._error(f"Error: 放送局 {station_id} はエリア {config.area_id} にありません "
                        f"(--station-list で確認してください)")
            return 1

        output_path = parsed.output or self._default_output_path(station_id, config)
        job = RecordingJob(station=station, window=window, output_target=str(output_path))

        progress = _ProgressBar()
        orchestrator = self.orchestrator_factory(
            config=config,
            on_transition=self._report_transition,
            on_progress=progress.update,
        )
        try:
            result = asyncio.run(orchestrator.run(job))
        finally:
            progress.close()

        if result.success:
            print(f"録音完了: {result.output_path} "
                  f"({result.bytes_written / 1024 / 1024:.1f}MB, "
                  f"{result.segments_written}セグメント)", file=self.stdout)
            return 0

        self._error(f"録音失敗: {describe_error(result.error)}")
        if Path(result.output_path).exists():
            self._error(f"不完全な出力ファイルが残っています: {result.output_path}")
        return 1

    @staticmethod
    def _default_output_path(station_id: str, config: RecorderConfig) -> Path:
        timestamp = datetime.now().strftime('%Y%m%d%H%M%S')
        return Path(config.output_dir) / f"{station_id}_{timestamp}.{config.output_format}"

    def _report_transition(self, job: RecordingJob):
        self.logger.debug(f"状態遷移: {' -> '.join(s.value for s in job.history)}")

    def _error(self, message: str):
        print(message, file=self.stderr)


class _ProgressBar:
    """セグメント書き込みの進捗表示"""

    def __init__(self):
        self._bar: Optional[tqdm] = None

    def update(self, done: int, total: int):
        if self._bar is None:
            self._bar = tqdm(total=total, desc="セグメント", unit="seg")
        self._bar.update(done - self._bar.n)

    def close(self):
        if self._bar is not None:
            self._bar.close()


def main():
    """メインエントリーポイント"""
    cli = RadikoRecorderCLI()
    sys.exit(cli.run())


if __name__ == "__main__":
    main()
