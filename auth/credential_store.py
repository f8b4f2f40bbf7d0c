from __future__ import annotations

import copy
import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path


class CredentialStore(ABC):
    """Key-value storage for credentials and in-flight authorization state."""

    @abstractmethod
    async def get(self, key: str) -> dict | None:
        raise NotImplementedError

    @abstractmethod
    async def set(self, key: str, value: dict) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, key: str) -> None:
        raise NotImplementedError


class MemoryCredentialStore(CredentialStore):
    def __init__(self) -> None:
        self._values: dict[str, dict] = {}

    async def get(self, key: str) -> dict | None:
        value = self._values.get(key)
        return None if value is None else copy.deepcopy(value)

    async def set(self, key: str, value: dict) -> None:
        self._values[key] = copy.deepcopy(value)

    async def delete(self, key: str) -> None:
        self._values.pop(key, None)


class FileCredentialStore(CredentialStore):
    def __init__(self, path: str | Path = ".credentials.json") -> None:
        self._path = Path(path)

    async def get(self, key: str) -> dict | None:
        return self._read_all().get(key)

    async def set(self, key: str, value: dict) -> None:
        all_values = self._read_all()
        all_values[key] = value
        self._write_all(all_values)

    async def delete(self, key: str) -> None:
        all_values = self._read_all()
        if all_values.pop(key, None) is not None:
            self._write_all(all_values)

    def _read_all(self) -> dict[str, dict]:
        if not self._path.exists():
            return {}

        raw = json.loads(self._path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise RuntimeError("Credential store file is invalid; expected top-level JSON object.")
        return raw

    def _write_all(self, payload: dict[str, dict]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f"{self._path.name}.",
            suffix=".tmp",
            dir=self._path.parent,
        )
        tmp_path = Path(tmp_name)

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, sort_keys=True)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self._path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()
