# tests/test_deploy.py
"""
Tests for multi-environment deployment.

Tests:
- Fail-soft fan-out (one failing target never stops the rest)
- Credential resolution (config entry, then environment)
- Target selection and package discovery
"""

import os
from unittest.mock import MagicMock

import pytest

from kpdev.config import (
    AuthConfig,
    KintoneConfig,
    ProdEnvConfig,
    ProjectSettings,
)
from kpdev.deploy import (
    DeployError,
    DeployResult,
    DeployStage,
    DeploySummary,
    DeployTarget,
    credential_env_var,
    deploy_all,
    deploy_to_target,
    find_latest_package,
    resolve_targets,
)
from kpdev.kintone.client import (
    KintoneClient,
    PluginImportError,
    PluginImportResult,
    UploadError,
)


PLUGIN_ID = "abcdefghijklmnopabcdefghijklmnop"


class FakeClientFactory:
    """Hands out mocked clients; domains listed in `fail` fail at the given stage."""

    def __init__(self, fail=None):
        self.fail = fail or {}
        self.calls = []

    def __call__(self, domain, username, password, timeout=None):
        self.calls.append((domain, username, password, timeout))
        client = MagicMock()
        stage = self.fail.get(domain)
        if stage == DeployStage.UPLOAD:
            client.upload_file.side_effect = UploadError("upload refused")
        else:
            client.upload_file.return_value = f"fk-{domain}"
        if stage == DeployStage.IMPORT:
            client.import_plugin.side_effect = PluginImportError("import rejected")
        else:
            client.import_plugin.return_value = PluginImportResult(id=PLUGIN_ID, version=3)
        return client


def _targets(n):
    return [
        DeployTarget(name=f"env{i}", domain=f"env{i}.cybozu.com", username="u", password="p")
        for i in range(n)
    ]


@pytest.fixture
def package(tmp_path):
    path = tmp_path / "plugin.zip"
    path.write_bytes(b"PK")
    return path


class TestDeployAll:
    def test_all_succeed(self, package):
        factory = FakeClientFactory()
        summary = deploy_all(_targets(3), package, client_factory=factory, timeout=7)

        assert summary.succeeded == 3
        assert summary.failed == 0
        assert [r.target for r in summary.results] == ["env0", "env1", "env2"]
        assert all(r.plugin_id == PLUGIN_ID and r.version == 3 for r in summary.results)
        assert all(call[3] == 7 for call in factory.calls)

    @pytest.mark.parametrize(
        "failing",
        [
            {"env0.cybozu.com": DeployStage.UPLOAD},
            {"env1.cybozu.com": DeployStage.IMPORT, "env3.cybozu.com": DeployStage.UPLOAD},
            {f"env{i}.cybozu.com": DeployStage.IMPORT for i in range(4)},
        ],
    )
    def test_failures_do_not_stop_later_targets(self, package, failing):
        factory = FakeClientFactory(fail=failing)
        summary = deploy_all(_targets(5), package, client_factory=factory)

        assert len(summary.results) == 5
        assert len(factory.calls) == 5
        assert summary.failed == len(failing)
        assert summary.succeeded == 5 - len(failing)
        for result in summary.results:
            domain = f"{result.target}.cybozu.com"
            if domain in failing:
                assert not result.ok
                assert result.failed_stage == failing[domain]
            else:
                assert result.ok

    def test_all_failed(self, package):
        factory = FakeClientFactory(fail={"env0.cybozu.com": DeployStage.UPLOAD})
        summary = deploy_all(_targets(1), package, client_factory=factory)
        assert summary.all_failed

    def test_malformed_domain_does_not_stop_later_targets(self, package):
        """A host urllib3 cannot parse fails only its own target."""
        targets = [
            DeployTarget(name="broken", domain="a..b", username="u", password="p"),
            DeployTarget(name="healthy", domain="env1.cybozu.com", username="u", password="p"),
        ]
        mocked = FakeClientFactory()

        def factory(domain, username, password, timeout=None):
            if domain == "a..b":
                return KintoneClient(domain, username, password, timeout=timeout)
            return mocked(domain, username, password, timeout=timeout)

        summary = deploy_all(targets, package, client_factory=factory)

        broken, healthy = summary.results
        assert not broken.ok
        assert broken.failed_stage == DeployStage.UPLOAD
        assert healthy.ok
        assert healthy.plugin_id == PLUGIN_ID
        assert [call[0] for call in mocked.calls] == ["env1.cybozu.com"]

    def test_empty_target_list(self, package):
        summary = deploy_all([], package, client_factory=FakeClientFactory())
        assert summary.results == []
        assert not summary.all_failed


class TestDeployToTarget:
    def test_missing_credentials_skips_network(self, package):
        factory = FakeClientFactory()
        target = DeployTarget(name="staging", domain="staging.cybozu.com", username="u")

        result = deploy_to_target(target, package, client_factory=factory)

        assert result.failed_stage == DeployStage.CREDENTIALS
        assert factory.calls == []

    def test_upload_failure_skips_import(self, package):
        clients = []

        def factory(*args, **kwargs):
            client = FakeClientFactory(fail={args[0]: DeployStage.UPLOAD})(*args, **kwargs)
            clients.append(client)
            return client

        result = deploy_to_target(_targets(1)[0], package, client_factory=factory)

        assert result.failed_stage == DeployStage.UPLOAD
        assert "upload refused" in result.error
        clients[0].import_plugin.assert_not_called()

    def test_import_uses_uploaded_file_key(self, package):
        clients = []

        def factory(*args, **kwargs):
            client = FakeClientFactory()(*args, **kwargs)
            clients.append(client)
            return client

        deploy_to_target(_targets(1)[0], package, client_factory=factory)

        clients[0].upload_file.assert_called_once_with(package)
        clients[0].import_plugin.assert_called_once_with("fk-env0.cybozu.com")

    def test_unexpected_upload_exception_recorded(self, package):
        def factory(*args, **kwargs):
            client = MagicMock()
            client.upload_file.side_effect = RuntimeError("socket exploded")
            return client

        result = deploy_to_target(_targets(1)[0], package, client_factory=factory)

        assert result.failed_stage == DeployStage.UPLOAD
        assert "socket exploded" in result.error

    def test_unexpected_import_exception_recorded(self, package):
        def factory(*args, **kwargs):
            client = MagicMock()
            client.upload_file.return_value = "fk"
            client.import_plugin.side_effect = KeyError("result")
            return client

        result = deploy_to_target(_targets(1)[0], package, client_factory=factory)

        assert result.failed_stage == DeployStage.IMPORT

    def test_password_hidden_from_repr(self):
        target = DeployTarget(name="a", domain="a.cybozu.com", username="u", password="hunter2")
        assert "hunter2" not in repr(target)


class TestSummary:
    def test_counts(self):
        summary = DeploySummary(
            results=[
                DeployResult(target="a", plugin_id=PLUGIN_ID, version=1),
                DeployResult(target="b", error="x", failed_stage=DeployStage.IMPORT),
            ]
        )
        assert summary.succeeded == 1
        assert summary.failed == 1
        assert not summary.all_failed


class TestResolveTargets:
    @pytest.fixture
    def settings(self):
        return ProjectSettings(
            kintone=KintoneConfig(
                prod=[
                    ProdEnvConfig(
                        name="production",
                        domain="prod.cybozu.com",
                        auth=AuthConfig(username="admin", password="secret"),
                    ),
                    ProdEnvConfig(name="staging", domain="staging.cybozu.com"),
                ]
            )
        )

    def test_config_credentials(self, settings):
        targets = resolve_targets(settings, {})

        assert [t.name for t in targets] == ["production", "staging"]
        assert targets[0].has_credentials
        assert not targets[1].has_credentials

    def test_environment_fallback(self, settings):
        env = {
            "KPDEV_PROD_STAGING_USERNAME": "stage-user",
            "KPDEV_PROD_STAGING_PASSWORD": "stage-pass",
            "KPDEV_PROD_PRODUCTION_USERNAME": "ignored",
        }

        targets = resolve_targets(settings, env)

        assert targets[0].username == "admin"
        assert targets[1].username == "stage-user"
        assert targets[1].password == "stage-pass"

    def test_shared_credentials_fallback(self, settings):
        settings.username = "shared-user"
        settings.password = "shared-pass"
        env = {"KPDEV_PROD_STAGING_PASSWORD": "stage-pass"}

        production, staging = resolve_targets(settings, env)

        assert production.username == "admin"
        assert production.password == "secret"
        assert staging.username == "shared-user"
        assert staging.password == "stage-pass"

    def test_named_selection_keeps_requested_order(self, settings):
        targets = resolve_targets(settings, {}, ["staging", "production"])
        assert [t.name for t in targets] == ["staging", "production"]

    def test_unknown_name(self, settings):
        with pytest.raises(DeployError, match="qa"):
            resolve_targets(settings, {}, ["qa"])

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("staging", "KPDEV_PROD_STAGING_USERNAME"),
            ("Acme prod", "KPDEV_PROD_ACME_PROD_USERNAME"),
            ("eu-west.2", "KPDEV_PROD_EU_WEST_2_USERNAME"),
        ],
    )
    def test_credential_env_var(self, name, expected):
        assert credential_env_var(name, "username") == expected


class TestFindLatestPackage:
    def test_newest_zip(self, tmp_path):
        old = tmp_path / "a-prod-v1.0.0.zip"
        new = tmp_path / "a-prod-v1.0.1.zip"
        old.write_bytes(b"1")
        new.write_bytes(b"2")
        os.utime(old, (1_000, 1_000))
        os.utime(new, (2_000, 2_000))
        (tmp_path / "notes.txt").write_text("x")

        assert find_latest_package(tmp_path) == new

    def test_no_packages(self, tmp_path):
        assert find_latest_package(tmp_path) is None
        assert find_latest_package(tmp_path / "missing") is None
