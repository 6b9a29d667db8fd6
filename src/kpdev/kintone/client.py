# src/kpdev/kintone/client.py
"""
kintone REST client for plugin deployment.

Deploying is two calls: upload the package through the file API to get a
fileKey, then ask kintone to import the plugin from that fileKey. Every
request is authenticated with the X-Cybozu-Authorization header
(base64 of "username:password").
"""

import base64
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class UploadError(Exception):
    """Raised when a package cannot be uploaded."""
    pass


class PluginImportError(Exception):
    """Raised when kintone does not confirm the plugin import."""
    pass


class KintoneAPIError(Exception):
    """Raised for failed read-only API calls."""
    pass


@dataclass(frozen=True)
class PluginImportResult:
    id: str
    version: int


@dataclass(frozen=True)
class PluginInfo:
    id: str
    name: str
    version: str


class KintoneClient:
    """
    Client for one kintone environment.

    Args:
        domain: Host name, e.g. "example.cybozu.com"
        username: Login name
        password: Password
        timeout: Seconds allowed for each request
        session: Optional requests.Session (tests inject one)
    """

    FILE_UPLOAD_PATH = "/k/v1/file.json"
    # Undocumented endpoint used by kintone's own plugin uploader
    PLUGIN_IMPORT_PATH = "/k/api/dev/plugin/import.json"
    PLUGINS_PATH = "/k/v1/plugins.json"

    def __init__(
        self,
        domain: str,
        username: str,
        password: str,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = f"https://{domain}"
        self.username = username
        self.timeout = timeout
        self._auth = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode(
            "ascii"
        )
        self.session = session or requests.Session()
        self.session.headers["X-Cybozu-Authorization"] = self._auth

    def _url(self, path: str) -> str:
        return self.base_url + path

    def upload_file(self, file_path: Path) -> str:
        """
        Upload a file and return its fileKey.

        Raises:
            UploadError: On network failure, non-200 status or an unexpected body
        """
        file_path = Path(file_path)
        logger.debug(f"Uploading {file_path.name} to {self.base_url}")

        try:
            with open(file_path, "rb") as fh:
                response = self.session.post(
                    self._url(self.FILE_UPLOAD_PATH),
                    files={"file": (file_path.name, fh, "application/zip")},
                    timeout=self.timeout,
                )
        except (OSError, ValueError) as e:
            # requests.RequestException is an OSError; a malformed host
            # surfaces from urllib3 as LocationParseError, a ValueError
            raise UploadError(f"Upload to {self.base_url} failed: {e}") from e

        if response.status_code != 200:
            raise UploadError(
                f"Upload failed: {response.status_code} {response.reason} - {response.text}"
            )

        try:
            file_key = response.json()["fileKey"]
        except (ValueError, KeyError, TypeError) as e:
            raise UploadError(f"Unexpected upload response: {response.text}") from e

        return file_key

    def _request(self, method: str, path: str, body: Optional[dict] = None) -> Any:
        """JSON request/response against the kintone API."""
        response = self.session.request(
            method,
            self._url(path),
            json=body,
            timeout=self.timeout,
        )
        if not 200 <= response.status_code < 300:
            raise KintoneAPIError(
                f"API error: {response.status_code} {response.reason} - {response.text}"
            )
        try:
            return response.json()
        except ValueError as e:
            raise KintoneAPIError(f"Response is not JSON: {response.text}") from e

    def import_plugin(self, file_key: str) -> PluginImportResult:
        """
        Install (or update) a plugin from an uploaded fileKey.

        Raises:
            PluginImportError: If the call fails or kintone reports no success
        """
        try:
            payload = self._request("POST", self.PLUGIN_IMPORT_PATH, {"item": file_key})
        except (requests.RequestException, ValueError, KintoneAPIError) as e:
            raise PluginImportError(f"Plugin import failed: {e}") from e

        if not isinstance(payload, dict) or payload.get("success") is not True:
            raise PluginImportError(f"Plugin import rejected: {payload}")

        try:
            result = payload["result"]
            return PluginImportResult(id=str(result["id"]), version=int(result["version"]))
        except (KeyError, TypeError, ValueError) as e:
            raise PluginImportError(f"Unexpected import response: {payload}") from e

    def get_plugins(self) -> list[PluginInfo]:
        """List plugins installed in the environment."""
        try:
            payload = self._request("GET", self.PLUGINS_PATH)
        except (requests.RequestException, ValueError) as e:
            raise KintoneAPIError(f"Failed to list plugins: {e}") from e

        if not isinstance(payload, dict) or not isinstance(payload.get("plugins", []), list):
            raise KintoneAPIError(f"Unexpected plugin list response: {payload}")

        return [
            PluginInfo(id=p["id"], name=p.get("name", ""), version=str(p.get("version", "")))
            for p in payload.get("plugins", [])
        ]

    def find_plugin(self, plugin_id: str) -> Optional[PluginInfo]:
        for plugin in self.get_plugins():
            if plugin.id == plugin_id:
                return plugin
        return None
