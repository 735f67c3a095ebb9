"""Compute backends and the shared reconcile driver.

Architecture:

    .. code-block:: text

        enclave_spine.enclave
        ├── labels.py   ← tag/label vocabulary and naming
        ├── base.py     ← Enclave ABC, run_studies pass, join_all fan-out
        ├── aws.py      ← AWSEnclave (ECS/Fargate, boto3)
        ├── docker.py   ← DockerEnclave (docker SDK)
        ├── kube.py     ← KubernetesEnclave (kubernetes client)
        └── factory.py  ← create_enclave(settings, gateway)

    Concrete backends are not re-exported here; import them from their
    modules or go through ``create_enclave``.
"""

from enclave_spine.enclave.base import Enclave, PassResult, ScanResult, exclude_job_ids, join_all
from enclave_spine.enclave.factory import create_enclave

__all__ = [
    "Enclave",
    "PassResult",
    "ScanResult",
    "create_enclave",
    "exclude_job_ids",
    "join_all",
]
