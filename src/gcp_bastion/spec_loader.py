"""Bastion intent and cluster context loading with validation.

SECURITY: All file operations enforce size limits to prevent DoS attacks
via large files. Input validation is performed at the boundary.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from .config import MAX_SPEC_FILE_SIZE_BYTES
from .models import BastionIntent, ClusterContext

logger = logging.getLogger(__name__)

KIND_BASTION = "Bastion"
KIND_CLUSTER = "Cluster"

ModelT = TypeVar("ModelT", bound=BaseModel)


class SpecLoadError(Exception):
    """Raised when spec loading or validation fails."""

    pass


def _read_mapping(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise SpecLoadError(f"Spec file not found: {path}")

    # SECURITY: Check file size before reading to prevent DoS
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat spec file {path}: {e}") from e

    if file_size > MAX_SPEC_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"Spec file exceeds maximum size of {MAX_SPEC_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read spec file {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Spec file must contain a YAML mapping: {path}")

    return raw_data


def _unwrap(raw_data: dict[str, Any], kind: str, path: Path) -> dict[str, Any]:
    """Extract the spec body from a Kubernetes-style wrapper, if present.

    metadata.name is folded into the body as "name" unless the body sets one.
    """
    if "apiVersion" not in raw_data or "spec" not in raw_data:
        return raw_data

    found_kind = raw_data.get("kind")
    if found_kind is not None and found_kind != kind:
        raise SpecLoadError(f"Expected kind '{kind}' but found '{found_kind}': {path}")

    spec_data = raw_data.get("spec") or {}
    if not isinstance(spec_data, dict):
        raise SpecLoadError(f"Spec section must be a mapping: {path}")

    metadata = raw_data.get("metadata") or {}
    if isinstance(metadata, dict) and metadata.get("name") and "name" not in spec_data:
        spec_data = {**spec_data, "name": metadata["name"]}

    return spec_data


def _validate(model: type[ModelT], data: dict[str, Any], path: Path) -> ModelT:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        # Format Pydantic validation errors for readability
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            msg = error["msg"]
            errors.append(f"  - {loc}: {msg}")

        error_list = "\n".join(errors)
        raise SpecLoadError(f"Validation failed for {path}:\n{error_list}") from e


def load_intent(path: Path) -> BastionIntent:
    """Load and validate a Bastion intent from YAML.

    Raises:
        SpecLoadError: If the file cannot be loaded or fails validation.
    """
    data = _unwrap(_read_mapping(path), KIND_BASTION, path)
    intent = _validate(BastionIntent, data, path)
    logger.info("Loaded bastion intent '%s' from %s", intent.name, path)
    return intent


def load_cluster(path: Path) -> ClusterContext:
    """Load and validate the cluster context from YAML.

    Raises:
        SpecLoadError: If the file cannot be loaded or fails validation.
    """
    data = _unwrap(_read_mapping(path), KIND_CLUSTER, path)
    cluster = _validate(ClusterContext, data, path)
    logger.info("Loaded cluster context '%s' from %s", cluster.name, path)
    return cluster


def load_intents(specs_dir: Path, cluster_file: Path | None = None) -> list[BastionIntent]:
    """Load every Bastion intent in a directory, sorted by file name.

    The cluster file is skipped when it lives in the same directory.

    Raises:
        SpecLoadError: If the directory is missing, any file is invalid, or
            two files declare the same bastion name.
    """
    if not specs_dir.is_dir():
        raise SpecLoadError(f"Specs directory not found: {specs_dir}")

    skip = cluster_file.resolve() if cluster_file is not None else None
    intents: list[BastionIntent] = []
    seen: dict[str, Path] = {}

    for path in sorted(specs_dir.glob("*.yaml")):
        if skip is not None and path.resolve() == skip:
            continue

        intent = load_intent(path)
        if intent.name in seen:
            raise SpecLoadError(
                f"Duplicate bastion name '{intent.name}' in {path} and {seen[intent.name]}"
            )
        seen[intent.name] = path
        intents.append(intent)

    return intents
