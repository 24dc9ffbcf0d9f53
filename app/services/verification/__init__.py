"""Verification Center: catalog, completion rules and the engine."""

from app.services.verification.catalog import StepCatalog, get_step_catalog
from app.services.verification.engine import VerificationEngine
from app.services.verification.initializer import initialize_verification_for_existing_students

__all__ = [
    "StepCatalog",
    "VerificationEngine",
    "get_step_catalog",
    "initialize_verification_for_existing_students",
]
