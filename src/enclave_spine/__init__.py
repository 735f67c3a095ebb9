"""
enclave-spine: reconcile ready research jobs against a compute backend.

On every pass the reconciler fetches the jobs a management service reports
as ready, the jobs a results service already knows about and the resources
already running on the backend (AWS ECS/Fargate, a Docker host or a
Kubernetes cluster). It launches what is missing, garbage-collects what is
stale and reports abnormally terminated jobs as errored.

Packages:
    core      - errors, structlog logging, pydantic settings
    upstream  - Registry / ResultStore HTTP gateway and wire models
    enclave   - backend ABC, run_studies driver and the three backends
    cli       - typer CLI (``enclave-spine``)

Modules:
    runner    - one-shot passes and the poll loop
    handler   - scheduled-invocation entry point
"""

__version__ = "0.1.0"
