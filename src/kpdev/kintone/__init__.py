"""
kintone API access.
"""

from kpdev.kintone.client import (
    KintoneClient,
    KintoneAPIError,
    PluginImportError,
    PluginImportResult,
    PluginInfo,
    UploadError,
)

__all__ = [
    "KintoneClient",
    "KintoneAPIError",
    "PluginImportError",
    "PluginImportResult",
    "PluginInfo",
    "UploadError",
]
