"""Admission handling for pod create, update and delete requests.

The webhook transport hands each AdmissionReview to ``PodInjector.review``;
the returned review either allows the pod unchanged, allows it with a JSON
patch adding the sidecars, or rejects it.
"""

import base64
import copy
import json
import random
from http import HTTPStatus
from typing import Any

import jsonpatch
from icecream import ic

from telegraf_injector.exceptions import InjectorError
from telegraf_injector.secrets import SecretManager
from telegraf_injector.settings import InjectorContext
from telegraf_injector.sidecar import SidecarHandler

ADMISSION_API_VERSION = "admission.k8s.io/v1"

# Same alphabet and length as the API server's generateName suffixes
_NAME_ALPHABET = "bcdfghjklmnpqrstvwxz2456789"
_NAME_SUFFIX_LENGTH = 5


def generate_name(base: str) -> str:
    """Generate a pod name from a generateName prefix."""
    return base + "".join(random.choices(_NAME_ALPHABET, k=_NAME_SUFFIX_LENGTH))


def allowed(uid: str, message: str = "") -> dict[str, Any]:
    """Build a response allowing the request unchanged."""
    response: dict[str, Any] = {"uid": uid, "allowed": True}
    if message:
        response["status"] = {"code": int(HTTPStatus.OK), "message": message}
    return response


def errored(uid: str, code: int, message: str) -> dict[str, Any]:
    """Build a response rejecting the request."""
    return {"uid": uid, "allowed": False, "status": {"code": int(code), "message": message}}


def patched(uid: str, original: dict[str, Any], mutated: dict[str, Any], message: str = "") -> dict[str, Any]:
    """Build a response allowing the request with a JSON patch from ``original`` to ``mutated``."""
    patch = jsonpatch.make_patch(original, mutated)
    ic(patch.patch)
    response = allowed(uid, message)
    if patch.patch:
        response["patchType"] = "JSONPatch"
        response["patch"] = base64.b64encode(json.dumps(patch.patch).encode()).decode()
    return response


class PodInjector:
    """Answers pod admission requests.

    Attributes:
        sidecars: Sidecar decision engine.
        secrets: Secret lifecycle manager.

    """

    def __init__(self, context: InjectorContext) -> None:
        """Initialize PodInjector from the injector context.

        Args:
            context: Context handed to the sidecar engine and the secret manager.

        """
        self.sidecars = SidecarHandler(context)
        self.secrets = SecretManager(context)
        self._reporter = context.reporter.child("inject-handler")

    def __repr__(self) -> str:
        """Return a detailed string representation for debugging."""
        return f"PodInjector(sidecars={self.sidecars!r}, secrets={self.secrets!r})"

    def review(self, document: dict[str, Any]) -> dict[str, Any]:
        """Answer an AdmissionReview.

        Args:
            document: AdmissionReview sent by the API server.

        Returns:
            AdmissionReview carrying the response.

        """
        request = document.get("request") or {}
        return {
            "apiVersion": document.get("apiVersion", ADMISSION_API_VERSION),
            "kind": "AdmissionReview",
            "response": self.handle(request),
        }

    def handle(self, request: dict[str, Any]) -> dict[str, Any]:
        """Answer a single admission request.

        Delete requests remove the pod's secrets and are always allowed. For
        create and update requests, sidecars that cannot be built are skipped
        with an advisory message; a secret that cannot be written rejects the
        request.

        Args:
            request: The ``request`` part of an AdmissionReview.

        Returns:
            The ``response`` part of an AdmissionReview.

        """
        uid = request.get("uid", "")
        operation = request.get("operation", "")
        ic(uid, operation, request.get("namespace"), request.get("name"))

        if operation == "DELETE":
            return self._handle_delete(uid, request.get("name", ""), request.get("namespace", ""))

        original = request.get("object")
        if not isinstance(original, dict):
            return errored(uid, HTTPStatus.BAD_REQUEST, "admission request does not contain a pod")

        pod = copy.deepcopy(original)
        if self.sidecars.skip(pod):
            self._reporter.info("skipping pod as telegraf-injector should not handle it")
            return allowed(uid, "telegraf-injector has no power over this pod")

        metadata = pod.setdefault("metadata", {})
        name = metadata.get("name") or ""
        if not name:
            name = generate_name(metadata.get("generateName") or "")
            metadata["name"] = name
            self._reporter.info(f"generated pod name {name}")
        namespace = request.get("namespace") or metadata.get("namespace") or ""

        self._reporter.info("adding sidecar container")
        result = self.sidecars.add_sidecars(pod, name, namespace)
        message = "; ".join(result.messages)

        if not result.secrets:
            self._reporter.info(f"not adding sidecar container(s), but allowing creation: {message}")
            return allowed(uid, message)

        if operation in ("CREATE", "UPDATE"):
            try:
                for record in result.secrets:
                    self.secrets.create_or_update(record)
            except InjectorError as err:
                self._reporter.error("unable to create secret", err)
                return errored(uid, HTTPStatus.BAD_REQUEST, str(err))

        return patched(uid, original, pod, message)

    def _handle_delete(self, uid: str, name: str, namespace: str) -> dict[str, Any]:
        failed = self.secrets.delete_for_pod(name, namespace)
        if failed:
            return allowed(uid, "telegraf-injector couldn't delete one or more secrets")
        return allowed(uid, "telegraf-injector doesn't block pod deletions")
