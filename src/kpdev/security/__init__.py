# src/kpdev/security/__init__.py
"""
Signing keys and plugin identity.
"""

from kpdev.security.keys import (
    KeyStage,
    KeyNotFoundError,
    KeyParseError,
    KeyGenerationError,
    generate_key_pair,
    load_key_pair,
    save_key_pair,
    ensure_key_pairs,
    key_path,
    derive_plugin_id,
    public_key_der,
    plugin_ids,
)

__all__ = [
    "KeyStage",
    "KeyNotFoundError",
    "KeyParseError",
    "KeyGenerationError",
    "generate_key_pair",
    "load_key_pair",
    "save_key_pair",
    "ensure_key_pairs",
    "key_path",
    "derive_plugin_id",
    "public_key_der",
    "plugin_ids",
]
