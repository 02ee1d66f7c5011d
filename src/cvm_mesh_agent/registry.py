"""
공유 레지스트리 클라이언트
Vault KV(v1/cubbyhole, v2) HTTP API 및 테스트용 인메모리 구현
"""

import os
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Mapping, Optional

import requests

from .errors import RegistryAuthFailure, RegistryError
from .logger import get_logger


class RegistryClient(ABC):
    """레지스트리 프로토콜: 키 단위 원자적 쓰기, 트랜잭션 없음"""

    @abstractmethod
    def write(self, path: str, fields: Mapping[str, str]) -> None:
        ...

    @abstractmethod
    def read(self, path: str) -> Optional[Dict[str, str]]:
        ...

    @abstractmethod
    def list(self, prefix: str) -> List[str]:
        ...

    @abstractmethod
    def write_if_absent(self, path: str, fields: Mapping[str, str]) -> bool:
        """키가 없을 때만 기록. 기록했으면 True"""

    def check_auth(self) -> None:
        """자격 증명 확인. 실패 시 RegistryAuthFailure"""


class InMemoryRegistry(RegistryClient):
    """프로세스 내 레지스트리 (테스트 용)"""

    def __init__(self, data: Optional[Dict[str, Dict[str, str]]] = None):
        self._data: Dict[str, Dict[str, str]] = {}
        self._lock = threading.Lock()
        for path, fields in (data or {}).items():
            self.write(path, fields)

    def write(self, path: str, fields: Mapping[str, str]) -> None:
        with self._lock:
            self._data[path] = {k: str(v) for k, v in fields.items()}

    def read(self, path: str) -> Optional[Dict[str, str]]:
        with self._lock:
            fields = self._data.get(path)
            return dict(fields) if fields is not None else None

    def list(self, prefix: str) -> List[str]:
        with self._lock:
            names = set()
            for path in self._data:
                if path.startswith(prefix):
                    rest = path[len(prefix):]
                    if rest and "/" not in rest:
                        names.add(rest)
            return sorted(names)

    def write_if_absent(self, path: str, fields: Mapping[str, str]) -> bool:
        with self._lock:
            if path in self._data:
                return False
            self._data[path] = {k: str(v) for k, v in fields.items()}
            return True

    def paths(self) -> List[str]:
        with self._lock:
            return sorted(self._data)


class VaultRegistryClient(RegistryClient):
    """Vault KV 시크릿 엔진 기반 레지스트리"""

    def __init__(self, address: str, token: str, mount: str = "secret",
                 kv_version: int = 2, namespace: str = "", timeout: int = 10,
                 verify_tls: bool = True, session: Optional[requests.Session] = None):
        if kv_version not in (1, 2):
            raise ValueError(f"Unsupported KV version: {kv_version}")
        self.address = address.rstrip("/")
        self.mount = mount.strip("/")
        self.kv_version = kv_version
        self.timeout = timeout
        self.verify_tls = verify_tls
        self.logger = get_logger()
        self.session = session or requests.Session()
        self.session.headers.update({"X-Vault-Token": token or ""})
        if namespace:
            self.session.headers.update({"X-Vault-Namespace": namespace})
        self._cas_warned = False

    def _url(self, path: str, kind: str = "data") -> str:
        if self.kv_version == 2:
            return f"{self.address}/v1/{self.mount}/{kind}/{path}"
        return f"{self.address}/v1/{self.mount}/{path}"

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            response = self.session.request(
                method, url, timeout=self.timeout, verify=self.verify_tls, **kwargs
            )
        except requests.exceptions.RequestException as e:
            raise RegistryError(f"Registry request failed ({method} {url}): {e}")

        if response.status_code in (401, 403):
            raise RegistryAuthFailure(f"Registry denied {method} {url} (HTTP {response.status_code})")
        return response

    def _error(self, response: requests.Response, action: str, path: str) -> RegistryError:
        return RegistryError(f"Registry {action} failed for {path}: HTTP {response.status_code} {response.text[:200]}")

    def write(self, path: str, fields: Mapping[str, str]) -> None:
        payload = dict(fields)
        if self.kv_version == 2:
            payload = {"data": payload}
        response = self._request("POST", self._url(path), json=payload)
        if response.status_code >= 400:
            raise self._error(response, "write", path)
        self.logger.debug(f"Registry write: {path}")

    def read(self, path: str) -> Optional[Dict[str, str]]:
        response = self._request("GET", self._url(path))
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise self._error(response, "read", path)

        data = (response.json() or {}).get("data")
        if self.kv_version == 2 and data is not None:
            data = data.get("data")
        if data is None:
            return None
        return {k: "" if v is None else str(v) for k, v in data.items()}

    def list(self, prefix: str) -> List[str]:
        response = self._request("GET", self._url(prefix, kind="metadata"), params={"list": "true"})
        if response.status_code == 404:
            return []
        if response.status_code >= 400:
            raise self._error(response, "list", prefix)

        keys = ((response.json() or {}).get("data") or {}).get("keys") or []
        # 하위 폴더("name/")는 제외
        return sorted(k for k in keys if not k.endswith("/"))

    def write_if_absent(self, path: str, fields: Mapping[str, str]) -> bool:
        if self.kv_version == 2:
            payload = {"data": dict(fields), "options": {"cas": 0}}
            response = self._request("POST", self._url(path), json=payload)
            if response.status_code == 400 and "check-and-set" in response.text:
                self.logger.debug(f"Registry check-and-set rejected: {path}")
                return False
            if response.status_code >= 400:
                raise self._error(response, "conditional write", path)
            return True

        # KV v1/cubbyhole에는 check-and-set이 없다: 읽기-쓰기-검증으로 대체
        if not self._cas_warned:
            self.logger.warning(
                "Registry mount has no check-and-set support (KV v1); "
                "concurrent joins are not fully protected; add workers one at a time"
            )
            self._cas_warned = True
        if self.read(path) is not None:
            return False
        self.write(path, fields)
        return self.read(path) == {k: str(v) for k, v in fields.items()}

    def check_auth(self) -> None:
        response = self._request("GET", f"{self.address}/v1/auth/token/lookup-self")
        if response.status_code >= 400:
            raise RegistryAuthFailure(f"Registry token lookup failed: HTTP {response.status_code}")
        self.logger.debug("Registry token is valid")


def resolve_token(token: str = "", token_file: str = "~/.vault-token") -> str:
    """토큰 결정 순서: 설정값, VAULT_TOKEN 환경변수, 토큰 파일"""
    if token:
        return token
    if os.environ.get("VAULT_TOKEN"):
        return os.environ["VAULT_TOKEN"]
    path = os.path.expanduser(token_file) if token_file else ""
    if path and os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            return f.read().strip()
    return ""


def create_registry(registry_config) -> VaultRegistryClient:
    """RegistryConfig로부터 Vault 클라이언트 생성

    Raises:
        RegistryAuthFailure: 사용할 토큰이 없음
        RegistryError: 지원하지 않는 KV 버전
    """
    token = resolve_token(registry_config.token, registry_config.token_file)
    if not token:
        raise RegistryAuthFailure("No registry token configured (config, VAULT_TOKEN or token file)")
    if registry_config.kv_version not in (1, 2):
        raise RegistryError(
            f"Unsupported KV version: {registry_config.kv_version}",
            remediation="registry.kv_version을 1 또는 2로 설정하세요.",
        )
    return VaultRegistryClient(
        address=registry_config.address,
        token=token,
        mount=registry_config.mount,
        kv_version=registry_config.kv_version,
        namespace=registry_config.namespace,
        timeout=registry_config.timeout,
        verify_tls=registry_config.verify_tls,
    )
