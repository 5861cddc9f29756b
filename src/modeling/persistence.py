"""Saving and reloading fitted models as NetCDF posteriors with JSON metadata."""

from __future__ import annotations

import hashlib
import json
import re
from pathlib import Path
from typing import Any, Mapping, Optional

import arviz as az
import pandas as pd

from src.corpus.transform import PredictorTransform

from .fitting import CountModelFitter, FittedModel, SamplerConfig
from .formula import ModelFormula
from .priors import PriorSet

METADATA_SUFFIX = ".meta.json"
POSTERIOR_SUFFIX = ".nc"
_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def artifact_slug(name: str) -> str:
    """Filesystem-safe stem for a model name."""
    slug = _UNSAFE.sub("_", name).strip("_")
    if not slug:
        raise ValueError(f"Cannot derive an artifact name from {name!r}")
    return slug


def artifact_paths(root: Path, name: str) -> tuple[Path, Path]:
    stem = artifact_slug(name)
    return root / f"{stem}{POSTERIOR_SUFFIX}", root / f"{stem}{METADATA_SUFFIX}"


def sha256sum(path: Path) -> str:
    """Compute the SHA256 checksum for a file."""
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def read_metadata(path: Path) -> Mapping[str, Any]:
    """Load the metadata sidecar written next to a posterior file."""
    if not path.exists():
        raise FileNotFoundError(f"Model metadata not found: {path}")
    return json.loads(path.read_text())


def write_metadata(path: Path, payload: Mapping[str, Any]) -> None:
    path.write_text(json.dumps(payload, indent=2, sort_keys=True))


def has_artifact(root: Path, name: str) -> bool:
    posterior_path, metadata_path = artifact_paths(root, name)
    return posterior_path.exists() and metadata_path.exists()


def save_fitted(fitted: FittedModel, root: Path) -> Path:
    """Persist the posterior collection and its formula/prior metadata under ``root``."""
    root.mkdir(parents=True, exist_ok=True)
    posterior_path, metadata_path = artifact_paths(root, fitted.name)
    fitted.idata.to_netcdf(str(posterior_path))
    write_metadata(
        metadata_path,
        {
            "name": fitted.name,
            "formula": fitted.formula.to_dict(),
            "priors": fitted.priors.to_dict(),
            "transform": fitted.transform.to_dict(),
            "sampler": fitted.sampler.to_dict(),
            "posterior_file": posterior_path.name,
            "sha256": sha256sum(posterior_path),
        },
    )
    print(f"[models] Saved '{fitted.name}' → {posterior_path}")
    return posterior_path


def load_fitted(root: Path, name: str) -> FittedModel:
    """Reload a model saved with `save_fitted`; the result matches a fresh fit's interface."""
    posterior_path, metadata_path = artifact_paths(root, name)
    metadata = read_metadata(metadata_path)
    if not posterior_path.exists():
        raise FileNotFoundError(f"Posterior file not found: {posterior_path}")
    expected_sha = metadata.get("sha256")
    if expected_sha and sha256sum(posterior_path) != expected_sha:
        raise ValueError(f"Posterior file {posterior_path} does not match its recorded checksum.")

    idata = az.from_netcdf(str(posterior_path))
    return FittedModel(
        name=str(metadata["name"]),
        formula=ModelFormula.from_dict(metadata["formula"]),
        priors=PriorSet.from_dict(metadata["priors"]),
        transform=PredictorTransform.from_dict(metadata["transform"]),
        sampler=SamplerConfig.from_dict(metadata["sampler"]),
        idata=idata,
    )


def load_or_fit(
    root: Path,
    data: pd.DataFrame,
    formula: ModelFormula,
    priors: PriorSet,
    transform: PredictorTransform,
    name: str,
    sampler: Optional[SamplerConfig] = None,
) -> FittedModel:
    """Load ``name`` from ``root`` when present, otherwise fit it and save the result.

    A stored artifact whose formula, priors, transform or sampler settings
    differ from the requested ones is rejected instead of being substituted
    for a fit.
    """
    requested = sampler or SamplerConfig()
    if has_artifact(root, name):
        fitted = load_fitted(root, name)
        if (
            fitted.formula != formula
            or fitted.priors != priors
            or fitted.transform != transform
            or fitted.sampler != requested
        ):
            raise ValueError(
                f"Stored model '{name}' under {root} was fitted with different inputs; "
                "delete it or choose another name."
            )
        print(f"[models] Loaded '{name}' from {root}")
        return fitted

    fitted = CountModelFitter(requested).fit(data, formula, priors, transform, name=name)
    save_fitted(fitted, root)
    return fitted


__all__ = [
    "METADATA_SUFFIX",
    "POSTERIOR_SUFFIX",
    "artifact_paths",
    "artifact_slug",
    "has_artifact",
    "load_fitted",
    "load_or_fit",
    "read_metadata",
    "save_fitted",
    "sha256sum",
    "write_metadata",
]
