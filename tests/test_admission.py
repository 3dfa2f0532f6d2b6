"""Tests for admission.py module."""

import base64
import json

import jsonpatch
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import MaxRetryError

from telegraf_injector.admission import PodInjector, allowed, errored, generate_name, patched
from telegraf_injector.models import ANNOTATION_CLASS, ANNOTATION_PORT, ISTIO_SIDECAR_ANNOTATION


def _request(operation="CREATE", pod=None, name="", namespace="default"):
    request = {"uid": "abc-123", "operation": operation, "namespace": namespace, "name": name}
    if pod is not None:
        request["object"] = pod
    return request


def _apply_patch(original, response):
    patch = json.loads(base64.b64decode(response["patch"]))
    return jsonpatch.apply_patch(original, patch)


class TestResponses:
    """Tests for response builders."""

    def test_generate_name(self):
        """Test generated names use the prefix and a five character suffix."""
        name = generate_name("web-")
        assert name.startswith("web-")
        assert len(name) == len("web-") + 5
        assert all(char in "bcdfghjklmnpqrstvwxz2456789" for char in name[4:])

    def test_allowed(self):
        """Test allowed responses with and without a message."""
        assert allowed("x") == {"uid": "x", "allowed": True}
        assert allowed("x", "note") == {"uid": "x", "allowed": True, "status": {"code": 200, "message": "note"}}

    def test_errored(self):
        """Test rejected responses."""
        assert errored("x", 400, "bad") == {"uid": "x", "allowed": False, "status": {"code": 400, "message": "bad"}}

    def test_patched(self):
        """Test that the patch transforms the original into the mutated object."""
        original = {"spec": {"containers": [{"name": "app"}]}}
        mutated = {"spec": {"containers": [{"name": "app"}, {"name": "telegraf"}]}}

        response = patched("x", original, mutated)

        assert response["allowed"] is True
        assert response["patchType"] == "JSONPatch"
        assert _apply_patch(original, response) == mutated

    def test_patched_without_changes(self):
        """Test that no patch is attached when nothing changed."""
        assert patched("x", {"a": 1}, {"a": 1}) == {"uid": "x", "allowed": True}


class TestReview:
    """Tests for PodInjector.review."""

    def test_envelope(self, context, make_pod):
        """Test that the response is wrapped in an AdmissionReview."""
        document = {"apiVersion": "admission.k8s.io/v1", "kind": "AdmissionReview", "request": _request(pod=make_pod())}

        review = PodInjector(context).review(document)

        assert review["apiVersion"] == "admission.k8s.io/v1"
        assert review["kind"] == "AdmissionReview"
        assert review["response"]["uid"] == "abc-123"


class TestHandle:
    """Tests for PodInjector.handle."""

    def test_pod_without_annotations(self, context, core_api, make_pod):
        """Test that pods without telegraf annotations are allowed unchanged."""
        response = PodInjector(context).handle(_request(pod=make_pod()))

        assert response == {
            "uid": "abc-123",
            "allowed": True,
            "status": {"code": 200, "message": "telegraf-injector has no power over this pod"},
        }
        core_api.create_namespaced_secret.assert_not_called()

    def test_missing_object(self, context):
        """Test that requests without a pod are rejected."""
        response = PodInjector(context).handle(_request())
        assert response["allowed"] is False
        assert response["status"]["code"] == 400

    def test_create_injects_sidecar(self, context, core_api, make_pod):
        """Test that a create request is patched and the secret written."""
        pod = make_pod({ANNOTATION_PORT: "8080"})

        response = PodInjector(context).handle(_request(pod=pod))

        assert response["allowed"] is True
        assert "status" not in response
        mutated = _apply_patch(pod, response)
        assert [container["name"] for container in mutated["spec"]["containers"]] == ["app", "telegraf"]
        assert mutated["spec"]["volumes"][0]["secret"]["secretName"] == "telegraf-config-mypod"
        core_api.create_namespaced_secret.assert_called_once()
        assert pod["spec"]["containers"] == [{"name": "app", "image": "nginx"}]

    def test_generate_name(self, context, core_api, make_pod):
        """Test that pods created from generateName get a name before secrets are named."""
        pod = make_pod({ANNOTATION_PORT: "8080"}, name="")
        pod["metadata"]["generateName"] = "web-"

        response = PodInjector(context).handle(_request(pod=pod))

        mutated = _apply_patch(pod, response)
        name = mutated["metadata"]["name"]
        assert name.startswith("web-")
        assert mutated["spec"]["volumes"][0]["secret"]["secretName"] == f"telegraf-config-{name}"
        body = core_api.create_namespaced_secret.call_args[0][1]
        assert body.metadata.name == f"telegraf-config-{name}"

    def test_missing_class_allows_without_sidecar(self, context, core_api, make_pod):
        """Test that a missing class admits the pod unchanged with a message."""
        pod = make_pod({ANNOTATION_CLASS: "unknown"})

        response = PodInjector(context).handle(_request(pod=pod))

        assert response["allowed"] is True
        assert "patch" not in response
        assert response["status"]["message"] == (
            "telegraf-injector could not add telegraf sidecar: class unknown not found"
        )
        core_api.create_namespaced_secret.assert_not_called()

    def test_partial_injection_message(self, make_context, core_api, make_pod):
        """Test that a skipped sidecar is reported alongside the patch."""
        context = make_context(enable_istio_injection=True)
        pod = make_pod({ANNOTATION_CLASS: "unknown", ISTIO_SIDECAR_ANNOTATION: "{}"})

        response = PodInjector(context).handle(_request(pod=pod))

        assert response["patchType"] == "JSONPatch"
        assert "could not add telegraf sidecar" in response["status"]["message"]
        mutated = _apply_patch(pod, response)
        assert [container["name"] for container in mutated["spec"]["containers"]] == ["app", "telegraf-istio"]

    def test_secret_conflict_rejects(self, context, core_api, make_pod, make_secret):
        """Test that a foreign secret with the same name rejects the pod."""
        core_api.create_namespaced_secret.side_effect = ApiException(status=409, reason="Conflict")
        core_api.read_namespaced_secret.return_value = make_secret(data={"password": "hunter2"})

        response = PodInjector(context).handle(_request(pod=make_pod({ANNOTATION_PORT: "8080"})))

        assert response["allowed"] is False
        assert response["status"]["code"] == 400
        assert "not managed by telegraf-operator" in response["status"]["message"]

    def test_connect_does_not_write_secrets(self, context, core_api, make_pod):
        """Test that operations other than create and update only patch."""
        response = PodInjector(context).handle(_request("CONNECT", pod=make_pod({ANNOTATION_PORT: "8080"})))

        assert response["patchType"] == "JSONPatch"
        core_api.create_namespaced_secret.assert_not_called()

    def test_delete(self, context, core_api):
        """Test that deletes remove the pod's secrets and are allowed."""
        response = PodInjector(context).handle(_request("DELETE", name="mypod", namespace="apps"))

        assert response["allowed"] is True
        assert response["status"]["message"] == "telegraf-injector doesn't block pod deletions"
        assert core_api.delete_namespaced_secret.call_count == 2

    def test_delete_failure_still_allowed(self, context, core_api):
        """Test that failed secret deletion never blocks the pod deletion."""
        core_api.delete_namespaced_secret.side_effect = ApiException(status=500, reason="Internal Server Error")

        response = PodInjector(context).handle(_request("DELETE", name="mypod", namespace="apps"))

        assert response["allowed"] is True
        assert response["status"]["message"] == "telegraf-injector couldn't delete one or more secrets"

    def test_delete_unreachable_still_allowed(self, context, core_api):
        """Test that an unreachable API server never blocks the pod deletion."""
        core_api.delete_namespaced_secret.side_effect = MaxRetryError(
            None, "/api/v1/namespaces/apps/secrets", reason="refused"
        )

        response = PodInjector(context).handle(_request("DELETE", name="mypod", namespace="apps"))

        assert response["allowed"] is True
        assert response["status"]["message"] == "telegraf-injector couldn't delete one or more secrets"

    def test_create_unreachable_rejects(self, context, core_api, make_pod):
        """Test that an unreachable API server rejects the pod instead of raising."""
        core_api.create_namespaced_secret.side_effect = MaxRetryError(
            None, "/api/v1/namespaces/default/secrets", reason="refused"
        )

        response = PodInjector(context).handle(_request(pod=make_pod({ANNOTATION_PORT: "8080"})))

        assert response["allowed"] is False
        assert response["status"]["code"] == 400
        assert "failed to connect to the Kubernetes cluster" in response["status"]["message"]
