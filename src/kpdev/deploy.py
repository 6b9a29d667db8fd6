# src/kpdev/deploy.py
"""
Deploying a signed package to the configured production environments.

Targets are processed one at a time. A failure on one target is recorded in
its DeployResult and the loop moves on; the caller decides what an all-failed
batch means.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Callable, Mapping, Optional, Sequence

from kpdev.config import ProjectSettings
from kpdev.kintone.client import (
    DEFAULT_TIMEOUT,
    KintoneClient,
    PluginImportError,
    UploadError,
)

logger = logging.getLogger(__name__)

ClientFactory = Callable[..., KintoneClient]


class DeployError(Exception):
    """Raised when a deployment cannot start at all."""
    pass


class DeployStage(StrEnum):
    CREDENTIALS = "credentials"
    UPLOAD = "upload"
    IMPORT = "import"


@dataclass
class DeployTarget:
    """A named kintone environment plus the credentials to reach it."""

    name: str
    domain: str
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password)


@dataclass
class DeployResult:
    target: str
    plugin_id: Optional[str] = None
    version: Optional[int] = None
    error: Optional[str] = None
    failed_stage: Optional[DeployStage] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class DeploySummary:
    results: list[DeployResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    @property
    def all_failed(self) -> bool:
        return bool(self.results) and self.succeeded == 0


def credential_env_var(target_name: str, kind: str) -> str:
    """
    Environment variable holding a target's credential.

    >>> credential_env_var("Acme prod", "username")
    'KPDEV_PROD_ACME_PROD_USERNAME'
    """
    slug = re.sub(r"[^A-Z0-9]+", "_", target_name.upper()).strip("_")
    return f"KPDEV_PROD_{slug}_{kind.upper()}"


def resolve_targets(
    settings: ProjectSettings,
    env: Mapping[str, str],
    names: Optional[Sequence[str]] = None,
) -> list[DeployTarget]:
    """
    Build DeployTargets from `kintone.prod` in the project config.

    Credentials come from the config entry, then from
    KPDEV_PROD_<NAME>_USERNAME / _PASSWORD in `env`, then from the shared
    `username` / `password` settings.

    Args:
        settings: Project settings
        env: Environment (see config.load_environment)
        names: Restrict to these target names, in this order

    Raises:
        DeployError: If a requested name is not configured
    """
    configured = {prod.name: prod for prod in settings.kintone.prod}

    if names:
        unknown = [n for n in names if n not in configured]
        if unknown:
            raise DeployError(f"Unknown deploy target(s): {', '.join(unknown)}")
        selected = [configured[n] for n in names]
    else:
        selected = list(settings.kintone.prod)

    targets = []
    for prod in selected:
        targets.append(
            DeployTarget(
                name=prod.name,
                domain=prod.domain,
                username=prod.auth.username
                or env.get(credential_env_var(prod.name, "username"))
                or settings.username,
                password=prod.auth.password
                or env.get(credential_env_var(prod.name, "password"))
                or settings.password,
            )
        )
    return targets


def deploy_to_target(
    target: DeployTarget,
    package_path: Path,
    client_factory: ClientFactory = KintoneClient,
    timeout: float = DEFAULT_TIMEOUT,
) -> DeployResult:
    """Upload and import on a single target; failures are returned, never raised."""
    if not target.has_credentials:
        logger.warning(f"[{target.name}] no credentials configured")
        return DeployResult(
            target=target.name,
            error="credentials are not configured",
            failed_stage=DeployStage.CREDENTIALS,
        )

    client = client_factory(
        target.domain, target.username, target.password, timeout=timeout
    )

    try:
        file_key = client.upload_file(package_path)
    except UploadError as e:
        logger.error(f"[{target.name}] upload failed: {e}")
        return DeployResult(
            target=target.name, error=str(e), failed_stage=DeployStage.UPLOAD
        )
    except Exception as e:
        logger.error(f"[{target.name}] upload failed: {e}", exc_info=True)
        return DeployResult(
            target=target.name, error=str(e), failed_stage=DeployStage.UPLOAD
        )

    try:
        result = client.import_plugin(file_key)
    except PluginImportError as e:
        logger.error(f"[{target.name}] import failed: {e}")
        return DeployResult(
            target=target.name, error=str(e), failed_stage=DeployStage.IMPORT
        )
    except Exception as e:
        logger.error(f"[{target.name}] import failed: {e}", exc_info=True)
        return DeployResult(
            target=target.name, error=str(e), failed_stage=DeployStage.IMPORT
        )

    logger.info(f"[{target.name}] deployed plugin {result.id} (v{result.version})")
    return DeployResult(target=target.name, plugin_id=result.id, version=result.version)


def deploy_all(
    targets: Sequence[DeployTarget],
    package_path: Path,
    client_factory: ClientFactory = KintoneClient,
    timeout: float = DEFAULT_TIMEOUT,
) -> DeploySummary:
    """
    Deploy `package_path` to every target, sequentially.

    Returns:
        DeploySummary with one result per target, in target order
    """
    package_path = Path(package_path)
    summary = DeploySummary()

    for target in targets:
        logger.info(f"Deploying {package_path.name} to {target.name} ({target.domain})")
        summary.results.append(
            deploy_to_target(target, package_path, client_factory, timeout)
        )

    logger.info(
        f"Deployment finished: {summary.succeeded} succeeded, {summary.failed} failed"
    )
    return summary


def find_latest_package(dist_dir: Path) -> Optional[Path]:
    """Most recently modified .zip directly under `dist_dir`."""
    dist_dir = Path(dist_dir)
    if not dist_dir.is_dir():
        return None
    packages = [p for p in dist_dir.glob("*.zip") if p.is_file()]
    if not packages:
        return None
    return max(packages, key=lambda p: p.stat().st_mtime)
