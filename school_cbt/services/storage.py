"""
services/storage.py

키-값 저장소. 세션 스냅샷 한 칸과 전송 실패한 결과 문서 백업에 쓰인다.

  - MemoryStore : 프로세스 메모리 (테스트/임시 실행용)
  - FileStore   : 디렉터리에 키별 JSON 파일 저장 (서버 재시작 후에도 복구 가능)
"""

import logging
import os
from typing import Dict, Optional, Protocol
from urllib.parse import quote

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class FileStore:
    """키 하나당 파일 하나. 쓰기는 임시 파일 → os.replace 로 원자적으로 처리."""

    def __init__(self, data_dir: str) -> None:
        self.data_dir = data_dir

    def _ensure_data_dir(self) -> None:
        os.makedirs(self.data_dir, exist_ok=True)

    def _path(self, key: str) -> str:
        return os.path.join(self.data_dir, f"{quote(key, safe='')}.json")

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

    def set(self, key: str, value: str) -> None:
        self._ensure_data_dir()
        path = self._path(key)
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(value)
        os.replace(tmp_path, path)

    def delete(self, key: str) -> None:
        try:
            os.remove(self._path(key))
        except FileNotFoundError:
            pass
        else:
            logger.debug(f"저장소 키 삭제: {key}")
