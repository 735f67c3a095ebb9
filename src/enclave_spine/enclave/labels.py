"""Tag/label vocabulary shared by every backend.

Every resource the reconciler creates carries a job-identifying key plus the
two fixed classification labels below. Resources without them are invisible
to discovery, cleanup and the error scan.
"""

from __future__ import annotations

import re

JOB_ID_TAG_KEY = "jobId"
TITLE_TAG_KEY = "title"

INSTANCE_LABEL = "instance"
MANAGED_BY_LABEL = "managed-by"
COMPONENT_LABEL = "component"
ROLE_LABEL = "role"

MANAGED_BY = "setup-app"
RESEARCH_CONTAINER = "research-container"
TOA_ACCESS_ROLE = "toa-access"

RESULT_ENDPOINT_ENV = "TRUSTED_OUTPUT_ENDPOINT"

MANAGED_SELECTOR: dict[str, str] = {
    COMPONENT_LABEL: RESEARCH_CONTAINER,
    MANAGED_BY_LABEL: MANAGED_BY,
}

_SLUG_INVALID = re.compile(r"[^a-z0-9._-]+")
_LABEL_MAX = 63


def container_name(job_id: str) -> str:
    return f"{RESEARCH_CONTAINER}-{job_id}"


def slugify_title(title: str) -> str:
    """Lower-case, label-safe form of a study title (max 63 chars, alnum ends)."""
    slug = _SLUG_INVALID.sub("-", title.lower())[:_LABEL_MAX]
    return slug.strip("-._")


def job_labels(job_id: str, title: str) -> dict[str, str]:
    """Labels stamped on a container or a cluster Job."""
    return {
        "app": container_name(job_id),
        COMPONENT_LABEL: RESEARCH_CONTAINER,
        "part-of": slugify_title(title),
        INSTANCE_LABEL: job_id,
        MANAGED_BY_LABEL: MANAGED_BY,
    }


def label_selector(labels: dict[str, str]) -> str:
    """``k=v,k=v`` selector string for list calls."""
    return ",".join(f"{key}={value}" for key, value in labels.items())


def matches_labels(labels: dict[str, str] | None, required: dict[str, str]) -> bool:
    labels = labels or {}
    return all(labels.get(key) == value for key, value in required.items())
