"""Unit tests for models.py - Resource models."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from conftest import cluster_document, node_template_document
from models import (
    Condition,
    ConditionType,
    LifecycleStatus,
    ManagedStatus,
    NodePool,
    ProviderConfig,
    RKE1Cluster,
    RKE1NodeTemplate,
    Secret,
    available,
    creating,
    lifecycle_from_state,
    reconcile_error,
    unavailable,
)


class TestLifecycle:
    def test_active_is_available(self):
        assert lifecycle_from_state("active") == LifecycleStatus.AVAILABLE

    @pytest.mark.parametrize("state", ["provisioning", "updating", "error", "Active"])
    def test_other_states_are_unavailable(self, state):
        assert lifecycle_from_state(state) == LifecycleStatus.UNAVAILABLE

    def test_status_without_ready_condition(self):
        assert ManagedStatus().lifecycle == LifecycleStatus.UNKNOWN

    def test_creating_is_not_available(self):
        status = ManagedStatus()
        status.set_conditions(creating())
        assert status.lifecycle == LifecycleStatus.UNKNOWN


class TestSetConditions:
    def test_replaces_same_type(self):
        status = ManagedStatus()
        status.set_conditions(unavailable())
        status.set_conditions(available())

        assert len(status.conditions) == 1
        assert status.lifecycle == LifecycleStatus.AVAILABLE

    def test_unchanged_condition_keeps_transition_time(self):
        stamp = datetime(2024, 1, 1, tzinfo=timezone.utc)
        status = ManagedStatus(
            conditions=[
                Condition(
                    type="Ready",
                    status="True",
                    reason="Available",
                    last_transition_time=stamp,
                )
            ]
        )

        status.set_conditions(available())

        assert status.get_condition(ConditionType.READY).last_transition_time == stamp

    def test_changed_condition_gets_new_time(self):
        status = ManagedStatus()
        status.set_conditions(available())

        status.set_conditions(unavailable())

        ready = status.get_condition(ConditionType.READY)
        assert ready.reason == "Unavailable"
        assert ready.last_transition_time is not None

    def test_independent_types(self):
        status = ManagedStatus()
        status.set_conditions(available(), reconcile_error(RuntimeError("boom")))

        synced = status.get_condition(ConditionType.SYNCED)
        assert synced.status == "False"
        assert synced.message == "boom"
        assert status.lifecycle == LifecycleStatus.AVAILABLE

    def test_status_wire_format(self):
        status = ManagedStatus()
        status.at_provider.id = "c-1"
        status.set_conditions(available())

        wire = status.to_wire()

        assert wire["atProvider"] == {"id": "c-1"}
        assert wire["conditions"][0]["type"] == "Ready"
        assert "lastTransitionTime" in wire["conditions"][0]


class TestRKE1Cluster:
    def test_parse_and_defaults(self):
        cr = RKE1Cluster.model_validate(cluster_document(name="prod"))

        assert cr.name == "prod"
        assert cr.namespace == ""
        assert cr.external_id is None
        assert cr.provider_config_name == "default"
        assert cr.remote_name == "prod"

    def test_wrong_kind_rejected(self):
        document = cluster_document()
        document["kind"] = "RKE1NodeTemplate"
        with pytest.raises(ValidationError):
            RKE1Cluster.model_validate(document)

    def test_cluster_request_uses_remote_name(self):
        cr = RKE1Cluster.model_validate(
            cluster_document(name="prod", rke={"name": "prod-eu", "dockerRootDir": "/d"})
        )

        assert cr.remote_name == "prod-eu"
        assert cr.cluster_request() == {"name": "prod-eu", "dockerRootDir": "/d"}

    def test_unknown_rke_fields_are_passed_through(self):
        cr = RKE1Cluster.model_validate(
            cluster_document(rke={"defaultPodSecurityPolicyTemplateId": "restricted"})
        )

        body = cr.cluster_request()

        assert body["defaultPodSecurityPolicyTemplateId"] == "restricted"

    def test_status_round_trip(self):
        document = cluster_document(name="prod")
        document["status"] = {"atProvider": {"id": "c-9"}, "conditions": []}

        cr = RKE1Cluster.model_validate(document)

        assert cr.external_id == "c-9"
        assert cr.to_wire()["status"]["atProvider"] == {"id": "c-9"}


class TestNodePool:
    def test_request_drops_reference(self):
        pool = NodePool.model_validate(
            {"hostnamePrefix": "w-", "quantity": 2, "nodeTemplateIdRef": "workers"}
        )

        assert pool.to_request("nt-1") == {
            "hostnamePrefix": "w-",
            "quantity": 2,
            "nodeTemplateId": "nt-1",
        }

    def test_request_keeps_literal_template_id(self):
        pool = NodePool.model_validate({"nodeTemplateId": "nt-fixed", "worker": True})
        assert pool.to_request() == {"nodeTemplateId": "nt-fixed", "worker": True}


class TestRKE1NodeTemplate:
    def test_request_drops_network_references(self):
        cr = RKE1NodeTemplate.model_validate(
            node_template_document(
                name="workers",
                amazonec2_config={
                    "region": "eu-west-1",
                    "vpcIdRef": "main",
                    "subnetIdRef": "private",
                    "securityGroup": ["rancher-nodes"],
                },
            )
        )

        body = cr.node_template_request()

        assert body["name"] == "workers"
        assert body["amazonec2Config"] == {
            "region": "eu-west-1",
            "securityGroup": ["rancher-nodes"],
        }

    def test_irregular_aliases(self):
        document = node_template_document()
        document["spec"]["forProvider"]["engineInstallURL"] = "https://get.docker.com"
        document["spec"]["forProvider"]["useInternalIPAddress"] = True

        body = RKE1NodeTemplate.model_validate(document).node_template_request()

        assert body["engineInstallURL"] == "https://get.docker.com"
        assert body["useInternalIPAddress"] is True


class TestProviderConfigAndSecret:
    def test_provider_config(self):
        config = ProviderConfig.model_validate(
            {
                "kind": "ProviderConfig",
                "metadata": {"name": "default"},
                "spec": {
                    "rancherHost": "https://rancher.example.com",
                    "credentials": {"source": "Environment", "env": {"name": "TOKEN"}},
                },
            }
        )

        assert config.spec.credentials.env.name == "TOKEN"
        assert config.spec.aws_creds is None

    def test_secret_values(self):
        secret = Secret.from_values("creds", "ns", {"token": b"abc"})

        assert secret.data == {"token": "YWJj"}
        assert secret.get_value("token") == b"abc"
        with pytest.raises(KeyError):
            secret.get_value("missing")
