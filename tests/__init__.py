"""
radiko_recorder テストパッケージ

テスト構造:
- test_auth.py: 認証モジュールのテスト
- test_station_catalog.py: 放送局リストのテスト
- test_playlist.py: プレイリスト解決のテスト
- test_segment_fetcher.py: セグメント取得のテスト
- test_encoder.py: 外部エンコーダのテスト
- test_job.py: ジョブ状態遷移のテスト
- test_recorder.py: 録音オーケストレーターのテスト
- test_error_handler.py: エラーハンドリングのテスト
- test_config_manager.py: 設定管理のテスト
- test_logging_config.py: ログ設定のテスト
- test_cli.py: CLIインターフェースのテスト
"""

import sys
from pathlib import Path

# プロジェクトルートをパスに追加
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

__version__ = "1.0.0"
