"""Versioned step catalog for the Verification Center.

The catalog is data, not code: it is read from a YAML file once per
process and validated into pydantic models. Initialization of a user's
pillars and steps is fully determined by the catalog version in use.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, model_validator

from app.core.config import settings
from app.core.exceptions import ConfigurationError
from app.models.verification import PillarKind, RequirementItem, StepType
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

# Step that the email confirmation fast path completes at initialization
CONTACT_VERIFICATION_STEP = "Contact Verification"


class CatalogStep(BaseModel):
    """Blueprint of one step inside a pillar."""

    name: str = Field(..., min_length=1)
    order: int = Field(..., ge=1)
    type: StepType
    checklist: list[str] = Field(default_factory=list)

    def requirement_checklist(self) -> list[RequirementItem]:
        return [RequirementItem(requirement=item, met=False) for item in self.checklist]


class CatalogPillar(BaseModel):
    """Blueprint of one pillar and its ordered steps."""

    pillar: PillarKind
    weight: int = Field(..., ge=0, le=100)
    steps: list[CatalogStep]

    @model_validator(mode="after")
    def _check_steps(self) -> "CatalogPillar":
        orders = [step.order for step in self.steps]
        if len(orders) != len(set(orders)):
            raise ValueError(f"duplicate step order in pillar '{self.pillar.value}'")
        names = [step.name for step in self.steps]
        if len(names) != len(set(names)):
            raise ValueError(f"duplicate step name in pillar '{self.pillar.value}'")
        self.steps.sort(key=lambda step: step.order)
        return self


class StepCatalog(BaseModel):
    """The full catalog for one version."""

    version: str = Field(..., min_length=1)
    pillars: list[CatalogPillar]

    @model_validator(mode="after")
    def _check_pillars(self) -> "StepCatalog":
        kinds = [p.pillar for p in self.pillars]
        if sorted(k.value for k in kinds) != sorted(k.value for k in PillarKind):
            raise ValueError("catalog must define each pillar kind exactly once")
        total = sum(p.weight for p in self.pillars)
        if total != 100:
            raise ValueError(f"pillar weights must sum to 100, got {total}")
        return self

    def pillar(self, kind: PillarKind) -> CatalogPillar:
        for entry in self.pillars:
            if entry.pillar == kind:
                return entry
        raise KeyError(kind)

    @property
    def step_count(self) -> int:
        return sum(len(p.steps) for p in self.pillars)


def parse_catalog(raw: dict, expected_version: Optional[str] = None) -> StepCatalog:
    """Validate a decoded catalog document.

    Raises:
        ConfigurationError: If the document is malformed or the version differs
    """
    try:
        catalog = StepCatalog.model_validate(raw)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid verification step catalog: {e}", original_error=e) from e

    if expected_version and catalog.version != expected_version:
        raise ConfigurationError(
            f"Verification catalog version mismatch: expected {expected_version}, found {catalog.version}"
        )
    return catalog


def load_catalog_file(path: Path, expected_version: Optional[str] = None) -> StepCatalog:
    """Read and validate a catalog YAML file."""
    if not path.exists():
        raise ConfigurationError(f"Verification catalog not found at {path}")

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    catalog = parse_catalog(raw, expected_version)
    LOGGER.info(
        f"Loaded verification catalog {catalog.version} from {path} "
        f"({len(catalog.pillars)} pillars, {catalog.step_count} steps)"
    )
    return catalog


@lru_cache(maxsize=1)
def get_step_catalog() -> StepCatalog:
    """Catalog configured for this process, loaded on first use."""
    return load_catalog_file(
        Path(settings.verification.catalog_path),
        expected_version=settings.verification.catalog_version,
    )
