#!/usr/bin/env python3
"""
RadikoRecorder - Radikoタイムフリー録音エンジン

このファイルはソースツリーから直接実行するためのエントリーポイントです。
インストール済みの場合は radiko-recorder コマンドと同じ動作をします。

使用例:
    # 放送局リストを表示
    python RadikoRecorder.py --station-list

    # 2024-11-20 12:00 から50分間の FMT を録音
    python RadikoRecorder.py FMT 20241120120000 50

    # 設定ファイルと出力先を指定
    python RadikoRecorder.py --config custom_config.json --output show.mp3 TBS 20241120210000 30
"""

import sys
from pathlib import Path

# プロジェクトルートディレクトリをPythonパスに追加
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

try:
    from radiko_recorder.cli import RadikoRecorderCLI

except ImportError as e:
    print(f"モジュールインポートエラー: {e}")
    print("必要な依存関係がインストールされていない可能性があります。")
    print("pip install -e . を実行してください。")
    sys.exit(1)


def main():
    """メインエントリーポイント"""
    try:
        cli = RadikoRecorderCLI()
        sys.exit(cli.run())

    except KeyboardInterrupt:
        print("\n操作がキャンセルされました")
        sys.exit(130)


if __name__ == "__main__":
    main()
