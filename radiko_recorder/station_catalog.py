"""
放送局リストモジュール

エリアごとの放送局一覧（読み取り専用のデータ表）を提供します。
- 放送局一覧XMLの取得・解析
- 放送局IDからの検索
"""

import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import List, Optional

import requests

from .error_handler import CatalogError
from .utils.base import LoggerMixin
from .utils.network_utils import create_radiko_session


@dataclass(frozen=True)
class Station:
    """放送局情報"""
    id: str
    name: str
    area_id: str
    ascii_name: str = ""
    ruby: str = ""

    def describe(self) -> str:
        return (f"Station: id={self.id}, name={self.name}, "
                f"ascii_name={self.ascii_name}, ruby={self.ruby}")


class StationCatalog(LoggerMixin):
    """放送局リスト"""

    STATION_LIST_URL = "https://radiko.jp/v3/station/list/{area_id}.xml"

    def __init__(self, area_id: str, session: Optional[requests.Session] = None,
                 timeout: float = 5.0):
        super().__init__()
        self.area_id = area_id
        self.session = session or create_radiko_session()
        self.timeout = timeout
        self._stations: Optional[List[Station]] = None

    def list_stations(self) -> List[Station]:
        """放送局リストを取得（オブジェクトの生存期間中はキャッシュ）"""
        if self._stations is None:
            self._stations = self._fetch_station_list()
        return list(self._stations)

    def get_station(self, station_id: str) -> Optional[Station]:
        for station in self.list_stations():
            if station.id == station_id:
                return station
        return None

    def _fetch_station_list(self) -> List[Station]:
        url = self.STATION_LIST_URL.format(area_id=self.area_id)
        self.logger.info(f"放送局リストを取得中: area_id={self.area_id}")

        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            self.logger.error(f"放送局リスト取得エラー: {e}")
            raise CatalogError(f"放送局リストの取得に失敗しました: {e}",
                               context={'area_id': self.area_id}) from e

        stations = self.parse_station_list(response.content, self.area_id)
        if not stations:
            raise CatalogError(f"放送局リストが空です: area_id={self.area_id}")

        self.logger.info(f"放送局リスト取得完了: {len(stations)}局")
        return stations

    @staticmethod
    def parse_station_list(content: bytes, area_id: str) -> List[Station]:
        """放送局一覧XMLを解析"""
        try:
            root = ET.fromstring(content)
        except ET.ParseError as e:
            raise CatalogError(f"放送局リストの解析に失敗しました: {e}") from e

        stations = []
        for station_elem in root.findall('.//station'):
            station = Station(
                id=_element_text(station_elem, 'id'),
                name=_element_text(station_elem, 'name'),
                area_id=area_id,
                ascii_name=_element_text(station_elem, 'ascii_name'),
                ruby=_element_text(station_elem, 'ruby'),
            )
            if station.id and station.name:  # 必須フィールド
                stations.append(station)
        return stations

    def close(self):
        self.session.close()


def _element_text(parent: ET.Element, tag_name: str) -> str:
    elem = parent.find(tag_name)
    return elem.text.strip() if elem is not None and elem.text else ""
