"""
Pytest fixtures and configuration for kpdev tests.
"""
import json
from pathlib import Path

import pytest

from kpdev.config import CONFIG_DIR, CONFIG_FILE
from kpdev.security.keys import KeyStage, generate_key_pair, key_path, save_key_pair


SAMPLE_MANIFEST = {
    "manifest_version": 1,
    "version": "1.2.3",
    "type": "APP",
    "name": {"ja": "サンプル", "en": "Sample Plugin"},
    "description": {"ja": "説明", "en": "A sample plugin"},
    "icon": "icon.png",
    "config": {
        "html": "config.html",
        "js": ["config-loader.js"],
        "required_params": ["apiToken"],
    },
}

SAMPLE_CONFIG = {
    "kintone": {
        "dev": {"domain": "dev.example.cybozu.com"},
        "prod": [
            {
                "name": "production",
                "domain": "prod.example.cybozu.com",
                "auth": {"username": "admin", "password": "secret"},
            },
            {"name": "staging", "domain": "staging.example.cybozu.com"},
        ],
    },
    "dev": {"origin": "https://localhost:3000", "entry": {"main": "src/main.ts"}},
    "targets": {"desktop": True, "mobile": True},
    "packageManager": "pnpm",
}


# =============================================================================
# Keys
# =============================================================================


@pytest.fixture(scope="session")
def rsa_key():
    """One 1024-bit key shared across the session (generation is slow-ish)."""
    return generate_key_pair()


@pytest.fixture(scope="session")
def other_rsa_key():
    return generate_key_pair()


# =============================================================================
# Projects
# =============================================================================


@pytest.fixture
def bundle_dir(tmp_path: Path) -> Path:
    """Bundler output as Vite leaves it in dist/."""
    out = tmp_path / "bundles"
    out.mkdir()
    (out / "main.js").write_text("console.log('main');\n")
    (out / "config.js").write_text("console.log('config');\n")
    (out / "main.css").write_text("body { color: red; }\n")
    return out


@pytest.fixture
def project_dir(tmp_path: Path, rsa_key, other_rsa_key) -> Path:
    """A project with config, manifest, both keys and prebuilt bundles."""
    root = tmp_path / "project"
    config_dir = root / CONFIG_DIR
    config_dir.mkdir(parents=True)

    (config_dir / CONFIG_FILE).write_text(json.dumps(SAMPLE_CONFIG, indent=2))
    (config_dir / "manifest.json").write_text(
        json.dumps(SAMPLE_MANIFEST, ensure_ascii=False, indent=2)
    )

    save_key_pair(rsa_key, key_path(root, KeyStage.PROD))
    save_key_pair(other_rsa_key, key_path(root, KeyStage.DEV))

    dist = root / "dist"
    dist.mkdir()
    (dist / "main.js").write_text("console.log('main');\n")
    (dist / "config.js").write_text("console.log('config');\n")

    (root / "package.json").write_text(
        '{\n  "name": "sample",\n  "version": "1.2.3",\n  "private": true\n}\n'
    )
    return root


@pytest.fixture
def sample_manifest():
    """A fresh copy of the sample manifest."""
    return json.loads(json.dumps(SAMPLE_MANIFEST))


@pytest.fixture(autouse=True)
def clean_kpdev_env(monkeypatch):
    """Keep developer KPDEV_* variables out of the tests."""
    import os

    for name in list(os.environ):
        if name.startswith("KPDEV_"):
            monkeypatch.delenv(name, raising=False)
