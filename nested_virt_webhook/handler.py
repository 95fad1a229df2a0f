"""
Admission handling for VirtualMachine objects.

Every decoded request is answered with `allowed: true`. Failures after the
envelope has been decoded are reported in `status.message` and the object is
admitted unchanged; blocking VM creation on an internal webhook error is
worse than admitting a VM without nested virtualization.
"""

import base64
import copy
import json
import logging
from typing import Any, Dict, Optional

from .mutation import MutationError, VMFeatureMutator
from .patch import PatchBuildError, create_json_patch
from .rules import RuleSet, matches
from .schema import (
    AdmissionRequest,
    ObjectDecodeError,
    decode_admission_review,
    decode_virtual_machine,
    encode_admission_review,
    vm_name,
)

logger = logging.getLogger(__name__)

PATCH_TYPE_JSON_PATCH = "JSONPatch"


def _soft_allow(response: Dict[str, Any], message: str) -> Dict[str, Any]:
    logger.warning("admitting uid=%s unchanged: %s", response["uid"], message)
    response["status"] = {"message": message}
    return response


class WebhookHandler:
    def __init__(self, rules: Optional[RuleSet], mutator: VMFeatureMutator) -> None:
        self.rules = rules
        self.mutator = mutator

    def review(self, body: bytes) -> Dict[str, Any]:
        """Answer a raw AdmissionReview body.

        Raises TransportDecodeError when the body carries no usable request.
        """
        api_version, request = decode_admission_review(body)
        return encode_admission_review(api_version, self.mutate(request))

    def mutate(self, request: AdmissionRequest) -> Dict[str, Any]:
        """Build the admission response for one request."""
        response: Dict[str, Any] = {"uid": request.uid, "allowed": True}

        try:
            vm = decode_virtual_machine(request.object_raw)
        except ObjectDecodeError as exc:
            return _soft_allow(response, f"failed to decode VirtualMachine: {exc}")

        name = vm_name(vm)
        if not matches(self.rules, request.namespace, name):
            logger.debug("uid=%s ns=%s name=%s does not match any rule", request.uid, request.namespace, name)
            return response

        mutated = copy.deepcopy(vm)
        try:
            self.mutator.mutate_vm(mutated)
        except MutationError as exc:
            return _soft_allow(response, f"failed to mutate VirtualMachine: {exc}")

        original_bytes = json.dumps(vm).encode("utf-8")
        mutated_bytes = json.dumps(mutated).encode("utf-8")
        try:
            patch = create_json_patch(original_bytes, mutated_bytes)
        except PatchBuildError as exc:
            return _soft_allow(response, f"failed to create JSON patch: {exc}")

        if patch:
            response["patch"] = base64.b64encode(patch).decode("utf-8")
            response["patchType"] = PATCH_TYPE_JSON_PATCH
            logger.info(
                "mutation uid=%s op=%s ns=%s name=%s patch=%s",
                request.uid,
                request.operation,
                request.namespace,
                name,
                patch.decode("utf-8"),
            )
        return response
