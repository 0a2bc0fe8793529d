"""Tests for the config loader (.k8s-inventory.yaml + environment overrides)."""

from pathlib import Path

import pytest
import yaml

from k8s_inventory.config import (
    CONFIG_FILENAME,
    AppConfig,
    ConfigError,
    find_config,
    load_config,
)

SAMPLE = """\
kubeconfig:
  cluster: prod-cluster
  in-cluster: true
kubernetes:
  request-timeout-seconds: 30
  worker-pool-size: 8
namespace-selectors:
  exclude:
    - kube-system
    - ^openshift-
  ignore-empty: true
account-routes:
  team-a:
    user: team-a-user
    password: team-a-pass
    namespaces:
      - team-a-.*
metadata-collection:
  pods:
    include-labels:
      - ^app$
missing-tag-policy:
  policy: dummy
  tag: NOTAG
inventory-report-limits:
  namespaces: 50
registration:
  integration-name: prod-agent
polling-interval-seconds: 120
anchore:
  url: https://anchore.example.com
  user: admin
  password: secret
  account: acme
  http:
    insecure: true
    timeout-seconds: 20
"""


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / CONFIG_FILENAME
    path.write_text(text, encoding="utf-8")
    return path


# --- find_config ---


class TestFindConfig:
    def test_finds_in_start_dir(self, tmp_path: Path):
        cfg = _write(tmp_path, "mode: adhoc\n")
        assert find_config(tmp_path) == cfg

    def test_finds_in_parent(self, tmp_path: Path):
        cfg = _write(tmp_path, "mode: adhoc\n")
        child = tmp_path / "sub" / "deep"
        child.mkdir(parents=True)
        assert find_config(child) == cfg

    def test_returns_none_when_missing(self, tmp_path: Path):
        assert find_config(tmp_path) is None

    def test_ignores_directories(self, tmp_path: Path):
        (tmp_path / CONFIG_FILENAME).mkdir()
        assert find_config(tmp_path) is None


# --- load_config ---


class TestLoadConfig:
    def test_defaults_without_file(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        cfg = load_config(environ={})
        assert cfg.config_path is None
        assert cfg.mode == "adhoc"
        assert cfg.polling_interval_seconds == 300
        assert cfg.health_report_interval_seconds == 60
        assert cfg.kubernetes.request_timeout_seconds == 60
        assert cfg.kubernetes.request_batch_size == 100
        assert cfg.kubernetes.worker_pool_size == 100
        assert cfg.anchore.account == "admin"
        assert cfg.anchore.http.timeout_seconds == 10
        assert cfg.missing_tag_policy.policy == "digest"
        assert cfg.missing_tag_policy.tag == "UNKNOWN"
        assert cfg.inventory_report_limits.namespaces == 0
        assert cfg.ignore_not_running is True

    def test_hyphenated_keys(self, tmp_path: Path):
        cfg = load_config(_write(tmp_path, SAMPLE), environ={})
        assert cfg.kubeconfig.cluster == "prod-cluster"
        assert cfg.kubeconfig.in_cluster is True
        assert cfg.kubernetes.request_timeout_seconds == 30
        assert cfg.kubernetes.worker_pool_size == 8
        assert cfg.namespace_selectors.exclude == ["kube-system", "^openshift-"]
        assert cfg.namespace_selectors.ignore_empty is True
        assert cfg.metadata_collection.pods.include_labels == ["^app$"]
        assert cfg.missing_tag_policy.policy == "dummy"
        assert cfg.inventory_report_limits.namespaces == 50
        assert cfg.registration.integration_name == "prod-agent"
        assert cfg.polling_interval_seconds == 120
        assert cfg.anchore.http.insecure is True
        assert cfg.anchore.http.timeout_seconds == 20

    def test_underscored_keys(self, tmp_path: Path):
        path = _write(tmp_path, "polling_interval_seconds: 42\nkubernetes:\n  request_batch_size: 7\n")
        cfg = load_config(path, environ={})
        assert cfg.polling_interval_seconds == 42
        assert cfg.kubernetes.request_batch_size == 7

    def test_account_route_names_kept(self, tmp_path: Path):
        text = "account-routes:\n  my-account:\n    namespaces: [a]\n"
        cfg = load_config(_write(tmp_path, text), environ={})
        assert list(cfg.account_routes) == ["my-account"]
        assert cfg.account_routes["my-account"].namespaces == ["a"]

    def test_auto_discovery(self, tmp_path: Path, monkeypatch):
        path = _write(tmp_path, "mode: periodic\n")
        monkeypatch.chdir(tmp_path)
        cfg = load_config(environ={})
        assert cfg.mode == "periodic"
        assert cfg.config_path == path.resolve()

    def test_no_auto_discovery(self, tmp_path: Path, monkeypatch):
        _write(tmp_path, "mode: periodic\n")
        monkeypatch.chdir(tmp_path)
        assert load_config(auto_discover=False, environ={}).mode == "adhoc"

    def test_missing_explicit_file(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "nope.yaml", environ={})

    def test_invalid_yaml(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(_write(tmp_path, "anchore: [unclosed\n"), environ={})

    def test_non_mapping(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="mapping"):
            load_config(_write(tmp_path, "- a\n- b\n"), environ={})

    @pytest.mark.parametrize("text", [
        "mode: sometimes\n",
        "output: xml\n",
        "missing-tag-policy:\n  policy: guess\n",
        "polling-interval-seconds: 0\n",
    ])
    def test_validation_errors(self, tmp_path: Path, text: str):
        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_config(_write(tmp_path, text), environ={})

    def test_env_overrides(self, tmp_path: Path):
        environ = {
            "K8S_INVENTORY_ANCHORE_URL": "https://other.example.com",
            "K8S_INVENTORY_ANCHORE_PASSWORD": "from-env",
            "K8S_INVENTORY_MODE": "periodic",
            "K8S_INVENTORY_POLLING_INTERVAL_SECONDS": "60",
            "K8S_INVENTORY_LOG_LEVEL": "debug",
            "K8S_INVENTORY_ANCHORE_USER": "",
        }
        cfg = load_config(_write(tmp_path, SAMPLE), environ=environ)
        assert cfg.anchore.url == "https://other.example.com"
        assert cfg.anchore.password == "from-env"
        assert cfg.anchore.user == "admin"
        assert cfg.mode == "periodic"
        assert cfg.polling_interval_seconds == 60
        assert cfg.log.level == "debug"


# --- AppConfig helpers ---


class TestAppConfig:
    def test_anchore_validity(self):
        assert not AppConfig().anchore.is_valid()
        cfg = AppConfig.model_validate({"anchore": {"url": "u", "user": "a", "password": "p"}})
        assert cfg.anchore.is_valid()

    def test_redacted_masks_passwords(self, tmp_path: Path):
        cfg = load_config(_write(tmp_path, SAMPLE), environ={})
        text = cfg.redacted()
        assert "secret" not in text
        assert "team-a-pass" not in text
        data = yaml.safe_load(text)
        assert data["anchore"]["password"] == "******"
        assert data["account_routes"]["team-a"]["password"] == "******"
        assert data["anchore"]["user"] == "admin"

    def test_mode_case_insensitive(self):
        assert AppConfig.model_validate({"mode": "PERIODIC"}).mode == "periodic"
