"""Sync job spec loading with validation.

SECURITY: File size is checked before reading to prevent DoS via large
files. Input validation is performed at the boundary.

A spec file holds one or more YAML documents. Each document is either flat
(a mapping with a top-level `kind`) or Kubernetes-style:

    apiVersion: teams-ops/v1
    kind: TeamMembershipSync
    metadata:
      name: engineering
    spec:
      teamId: ...
      source:
        groupId: ...
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import MAX_SPEC_FILE_SIZE_BYTES
from .models import BaseJob, get_job_class

logger = logging.getLogger(__name__)


class SpecLoadError(Exception):
    """Raised when spec loading or validation fails."""

    pass


def _format_validation_error(error: ValidationError, spec_path: Path, position: int) -> str:
    errors = []
    for item in error.errors():
        loc = ".".join(str(x) for x in item["loc"])
        errors.append(f"  - {loc}: {item['msg']}")
    error_list = "\n".join(errors)
    return f"Validation failed for {spec_path} (document {position}):\n{error_list}"


def parse_job(raw_data: Any, spec_path: Path, position: int = 1) -> BaseJob:
    """Validate one YAML document into a job model.

    Raises:
        SpecLoadError: If the document is malformed or fails validation.
    """
    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Document {position} in {spec_path} must be a YAML mapping")

    kind = raw_data.get("kind")
    if not kind:
        raise SpecLoadError(f"Document {position} in {spec_path} is missing 'kind'")

    if "apiVersion" in raw_data and "spec" in raw_data:
        # Kubernetes-style format: apiVersion, kind, metadata, spec
        spec_data = raw_data.get("spec")
        if not isinstance(spec_data, dict):
            raise SpecLoadError(f"Spec section must be a mapping: {spec_path}")
        spec_data = dict(spec_data)
        metadata = raw_data.get("metadata") or {}
        if isinstance(metadata, dict) and metadata.get("name") and "name" not in spec_data:
            spec_data["name"] = metadata["name"]
    else:
        # Flat format: direct spec content
        spec_data = {key: value for key, value in raw_data.items() if key != "kind"}

    try:
        job_class = get_job_class(str(kind))
    except ValueError as e:
        raise SpecLoadError(f"{spec_path}: {e}") from e

    try:
        return job_class.model_validate(spec_data)
    except ValidationError as e:
        raise SpecLoadError(_format_validation_error(e, spec_path, position)) from e


def load_jobs(spec_path: Path) -> list[BaseJob]:
    """Load and validate every sync job in a YAML file.

    Args:
        spec_path: Path to the YAML spec file.

    Returns:
        Validated jobs in file order.

    Raises:
        SpecLoadError: If the file cannot be loaded or any job fails validation.
    """
    if not spec_path.exists():
        raise SpecLoadError(f"Spec file not found: {spec_path}")

    # SECURITY: Check file size before reading to prevent DoS
    try:
        file_size = spec_path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat spec file {spec_path}: {e}") from e

    if file_size > MAX_SPEC_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"Spec file exceeds maximum size of {MAX_SPEC_FILE_SIZE_BYTES} bytes: {spec_path}"
        )

    try:
        content = spec_path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read spec file {spec_path}: {e}") from e

    try:
        documents = [doc for doc in yaml.safe_load_all(content) if doc is not None]
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {spec_path}: {e}") from e

    if not documents:
        raise SpecLoadError(f"Spec file contains no jobs: {spec_path}")

    jobs = [parse_job(doc, spec_path, position) for position, doc in enumerate(documents, 1)]

    team_kinds = [(job.team_id.lower(), type(job).__name__) for job in jobs]
    if len(set(team_kinds)) != len(team_kinds):
        raise SpecLoadError(
            f"{spec_path} declares the same job kind twice for one team; "
            f"merge them so one run cannot undo the other"
        )

    logger.info("Loaded %d sync job(s) from %s", len(jobs), spec_path)
    return jobs
