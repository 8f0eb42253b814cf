"""Unit tests for kubeconfig synthesis."""

import base64

import pytest
import yaml

from gke_deployer.models.errors import CredentialAuthFailure, InvalidClusterMetadata
from gke_deployer.services.kubernetes.kubeconfig import kubeconfig_name, synthesize
from gke_deployer.services.kubernetes.models import ClusterMetadata

CA = base64.b64encode(b"-----BEGIN CERTIFICATE-----\nabc\n-----END CERTIFICATE-----\n").decode()


def _cluster(**overrides):
    values = {"name": "c", "location": "z", "endpoint": "203.0.113.10", "ca_certificate": CA}
    values.update(overrides)
    return ClusterMetadata(**values)


class TestKubeconfigName:
    """Tests for context naming."""

    def test_follows_gcloud_convention(self):
        assert kubeconfig_name("p", "us-central1-a", "prod") == "gke_p_us-central1-a_prod"


class TestSynthesize:
    """Tests for synthesize."""

    def test_single_cluster_user_context(self):
        """Exactly one of each entry, with the context current."""
        kc = synthesize("p", _cluster(), "token-1")
        doc = kc.to_dict()

        assert doc["apiVersion"] == "v1"
        assert doc["kind"] == "Config"
        assert len(doc["clusters"]) == 1
        assert len(doc["users"]) == 1
        assert len(doc["contexts"]) == 1
        assert doc["current-context"] == "gke_p_z_c"
        assert doc["contexts"][0]["name"] == doc["current-context"]
        assert doc["contexts"][0]["context"] == {"cluster": "gke_p_z_c", "user": "gke_p_z_c"}

    def test_server_and_credentials(self):
        kc = synthesize("p", _cluster(), "token-1")
        doc = kc.to_dict()

        assert doc["clusters"][0]["cluster"]["server"] == "https://203.0.113.10"
        assert doc["clusters"][0]["cluster"]["certificate-authority-data"] == CA
        assert doc["users"][0]["user"] == {"token": "token-1"}

    def test_https_endpoint_kept(self):
        kc = synthesize("p", _cluster(endpoint="https://203.0.113.10:443"), "t")
        assert kc.server == "https://203.0.113.10:443"

    def test_repeated_calls_structurally_identical(self):
        first = synthesize("p", _cluster(), "token-1")
        second = synthesize("p", _cluster(), "token-1")

        assert first == second
        assert first.to_dict() == second.to_dict()

    def test_differs_only_in_token(self):
        first = synthesize("p", _cluster(), "token-1").to_dict()
        second = synthesize("p", _cluster(), "token-2").to_dict()

        first["users"][0]["user"]["token"] = second["users"][0]["user"]["token"]
        assert first == second

    def test_yaml_round_trips(self):
        kc = synthesize("p", _cluster(), "token-1")
        assert yaml.safe_load(kc.to_yaml()) == kc.to_dict()

    def test_token_not_in_repr(self):
        kc = synthesize("p", _cluster(), "super-secret-token")
        assert "super-secret-token" not in repr(kc)
        assert CA not in repr(kc)

    def test_ca_with_line_breaks_normalized(self):
        wrapped = "\n".join(CA[i : i + 16] for i in range(0, len(CA), 16))
        kc = synthesize("p", _cluster(ca_certificate=wrapped), "t")
        assert kc.credentials.ca_data == CA


class TestSynthesizeErrors:
    """Tests for malformed cluster metadata."""

    @pytest.mark.parametrize("endpoint", ["", "   ", "203.0.113.10 extra"])
    def test_bad_endpoint(self, endpoint):
        with pytest.raises(InvalidClusterMetadata) as exc_info:
            synthesize("p", _cluster(endpoint=endpoint), "t")
        assert exc_info.value.cluster == "c"

    def test_plain_http_rejected(self):
        with pytest.raises(InvalidClusterMetadata, match="https"):
            synthesize("p", _cluster(endpoint="http://203.0.113.10"), "t")

    def test_missing_ca(self):
        with pytest.raises(InvalidClusterMetadata, match="missing"):
            synthesize("p", _cluster(ca_certificate=""), "t")

    def test_invalid_base64_ca(self):
        with pytest.raises(InvalidClusterMetadata, match="base64"):
            synthesize("p", _cluster(ca_certificate="not*base64!"), "t")

    def test_empty_token(self):
        with pytest.raises(CredentialAuthFailure):
            synthesize("p", _cluster(), "")

    def test_invalid_metadata_exit_status(self):
        with pytest.raises(InvalidClusterMetadata) as exc_info:
            synthesize("p", _cluster(endpoint=""), "t")
        assert exc_info.value.exit_status == 4
