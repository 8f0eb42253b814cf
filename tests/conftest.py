"""Pytest configuration and shared fixtures."""

import base64
import os
import stat
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Set test environment before importing config
os.environ.pop("CREDENTIALS_DIR", None)
os.environ["LOG_FORMAT"] = "console"
os.environ["LOG_LEVEL"] = "DEBUG"

from kubernetes import client as k8s

from gke_deployer.models import DeployConfig
from gke_deployer.services.cloud.factory import ClientFactory, ClientFactoryCache
from gke_deployer.services.interfaces import ClusterClientInterface, CredentialResolverInterface
from gke_deployer.services.kubernetes.kubeconfig import synthesize
from gke_deployer.services.kubernetes.kubectl import KubectlExecutor
from gke_deployer.services.kubernetes.models import AccessToken, ClusterMetadata
from gke_deployer.utils.logging import setup_logging

setup_logging()

TEST_PROJECT_ID = "p"
TEST_ZONE = "z"
TEST_CLUSTER = "c"
TEST_CREDENTIALS_ID = "ci-deployer"
TEST_TOKEN = "ya29.test-access-token"
TEST_CA_PEM = b"-----BEGIN CERTIFICATE-----\nMIIBtest\n-----END CERTIFICATE-----\n"

FAKE_KUBECTL = """#!/bin/sh
if [ -n "$FAKE_KUBECTL_LOG" ]; then
  {
    echo "---"
    echo "args=$*"
    echo "cwd=$(pwd)"
    echo "kubeconfig=$KUBECONFIG"
    if [ -f "$KUBECONFIG" ]; then
      echo "exists=yes"
      echo "mode=$(stat -c %a "$KUBECONFIG")"
      echo "dirmode=$(stat -c %a "$(dirname "$KUBECONFIG")")"
      cp "$KUBECONFIG" "$FAKE_KUBECTL_LOG.kubeconfig"
    else
      echo "exists=no"
    fi
  } >> "$FAKE_KUBECTL_LOG"
fi
if [ -n "$FAKE_KUBECTL_STDERR" ]; then
  echo "$FAKE_KUBECTL_STDERR" >&2
fi
if [ -n "$FAKE_KUBECTL_BULK" ]; then
  head -c "$FAKE_KUBECTL_BULK" /dev/zero | tr "\\000" x
fi
if [ -n "$FAKE_KUBECTL_SLEEP" ]; then
  exec sleep "$FAKE_KUBECTL_SLEEP"
fi
echo "deployment.apps/web configured"
exit "${FAKE_KUBECTL_EXIT:-0}"
"""

DEPLOYMENT_MANIFEST = """apiVersion: apps/v1
kind: Deployment
metadata:
  name: web
spec:
  replicas: 2
  selector:
    matchLabels:
      app: web
  template:
    metadata:
      labels:
        app: web
    spec:
      containers:
        - name: web
          image: nginx:1.25
"""

SERVICE_MANIFEST = """apiVersion: v1
kind: Service
metadata:
  name: web
  namespace: frontend
spec:
  type: LoadBalancer
  selector:
    app: web
  ports:
    - port: 80
"""


class FakeKubectl:
    """Handle on the stub kubectl script and the invocations it recorded."""

    def __init__(self, path: Path, log_path: Path):
        self.path = path
        self.log_path = log_path

    @property
    def captured_kubeconfig(self) -> Path:
        return Path(f"{self.log_path}.kubeconfig")

    def calls(self):
        """Parse recorded invocations into dicts."""
        if not self.log_path.exists():
            return []
        calls = []
        for block in self.log_path.read_text().split("---\n"):
            if not block.strip():
                continue
            call = {}
            for line in block.strip().splitlines():
                key, _, value = line.partition("=")
                call[key] = value
            calls.append(call)
        return calls


@pytest.fixture
def fake_kubectl(tmp_path, monkeypatch):
    """Executable stub standing in for kubectl, logging each call."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    script = bin_dir / "kubectl"
    script.write_text(FAKE_KUBECTL)
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    log_path = tmp_path / "kubectl.log"
    monkeypatch.setenv("FAKE_KUBECTL_LOG", str(log_path))
    for name in ("FAKE_KUBECTL_EXIT", "FAKE_KUBECTL_STDERR", "FAKE_KUBECTL_SLEEP", "FAKE_KUBECTL_BULK"):
        monkeypatch.delenv(name, raising=False)

    return FakeKubectl(script, log_path)


@pytest.fixture
def ephemeral_root(tmp_path):
    """Root directory for ephemeral kubeconfig directories."""
    root = tmp_path / "ephemeral"
    root.mkdir()
    return root


@pytest.fixture
def workspace(tmp_path):
    """Build workspace with one Deployment manifest."""
    ws = tmp_path / "workspace"
    (ws / "k8s").mkdir(parents=True)
    (ws / "k8s" / "deployment.yaml").write_text(DEPLOYMENT_MANIFEST)
    return ws


@pytest.fixture
def executor(fake_kubectl, ephemeral_root):
    """KubectlExecutor wired to the stub kubectl."""
    return KubectlExecutor(
        kubectl_path=str(fake_kubectl.path),
        timeout_seconds=10,
        ephemeral_dir=str(ephemeral_root),
        run_id="4242-testrun",
    )


@pytest.fixture
def cluster_metadata():
    """Cluster metadata as returned by the container API."""
    return ClusterMetadata(
        name=TEST_CLUSTER,
        location=TEST_ZONE,
        endpoint="203.0.113.10",
        ca_certificate=base64.b64encode(TEST_CA_PEM).decode("ascii"),
    )


@pytest.fixture
def kubeconfig(cluster_metadata):
    """Synthesized kubeconfig for the test cluster."""
    return synthesize(TEST_PROJECT_ID, cluster_metadata, TEST_TOKEN)


@pytest.fixture
def deploy_config():
    """Deploy configuration for the test cluster."""
    return DeployConfig(
        project_id=TEST_PROJECT_ID,
        cluster_name=TEST_CLUSTER,
        zone=TEST_ZONE,
        credentials_id=TEST_CREDENTIALS_ID,
        manifest_pattern="k8s/*.yaml",
        verify_deployments=True,
    )


@pytest.fixture
def mock_resolver():
    """Credential resolver returning a fixed token."""
    resolver = MagicMock(spec=CredentialResolverInterface)
    resolver.load_credentials.return_value = MagicMock(name="google-credentials")
    resolver.resolve.return_value = AccessToken(token=TEST_TOKEN, project_id=TEST_PROJECT_ID)
    return resolver


@pytest.fixture
def mock_cluster_client(cluster_metadata):
    """Cluster client returning the test cluster."""
    cluster_client = MagicMock(spec=ClusterClientInterface)
    cluster_client.get_cluster.return_value = cluster_metadata
    cluster_client.list_clusters.return_value = [cluster_metadata]
    return cluster_client


@pytest.fixture
def client_cache(mock_resolver, mock_cluster_client):
    """Client factory cache building factories over the mocks."""
    return ClientFactoryCache(
        builder=lambda credentials_id: ClientFactory(
            credentials_id,
            resolver=mock_resolver,
            cluster_client_builder=lambda credentials: mock_cluster_client,
        )
    )


class FakeClientContext:
    """Stand-in for KubernetesClientContext exposing mock API clients."""

    def __init__(self, apps_api, core_api):
        self.apps_api = apps_api
        self.core_api = core_api
        self.entered_with = None
        self.closed = False

    def __call__(self, kubeconfig):
        self.entered_with = kubeconfig
        return self

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.closed = True
        return False


@pytest.fixture
def apps_api():
    """AppsV1Api mock."""
    return MagicMock(spec=k8s.AppsV1Api)


@pytest.fixture
def core_api():
    """CoreV1Api mock with no pods selected by default."""
    api = MagicMock(spec=k8s.CoreV1Api)
    api.list_namespaced_pod.return_value = k8s.V1PodList(items=[])
    return api


@pytest.fixture
def client_context(apps_api, core_api):
    return FakeClientContext(apps_api, core_api)


@pytest.fixture
def make_deployment():
    """Factory for V1Deployment objects with a given rollout status."""

    def _make(
        name="web",
        replicas=2,
        ready=0,
        updated=None,
        generation=1,
        observed=1,
        conditions=None,
        match_labels=None,
    ):
        return k8s.V1Deployment(
            metadata=k8s.V1ObjectMeta(name=name, generation=generation),
            spec=k8s.V1DeploymentSpec(
                replicas=replicas,
                selector=k8s.V1LabelSelector(match_labels=match_labels or {"app": name}),
                template=k8s.V1PodTemplateSpec(),
            ),
            status=k8s.V1DeploymentStatus(
                observed_generation=observed,
                replicas=replicas,
                updated_replicas=replicas if updated is None else updated,
                ready_replicas=ready,
                conditions=conditions,
            ),
        )

    return _make


@pytest.fixture
def make_pod():
    """Factory for V1Pod objects with one container in a given waiting state."""

    def _make(name="web-5d4f8-abcde", waiting_reason=None):
        state = k8s.V1ContainerState(
            waiting=k8s.V1ContainerStateWaiting(reason=waiting_reason) if waiting_reason else None,
            running=None if waiting_reason else k8s.V1ContainerStateRunning(),
        )
        return k8s.V1Pod(
            metadata=k8s.V1ObjectMeta(name=name),
            status=k8s.V1PodStatus(
                container_statuses=[
                    k8s.V1ContainerStatus(
                        name="web",
                        image="nginx:1.25",
                        image_id="",
                        ready=waiting_reason is None,
                        restart_count=3 if waiting_reason else 0,
                        state=state,
                    )
                ]
            ),
        )

    return _make
