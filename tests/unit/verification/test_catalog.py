import copy
from pathlib import Path

import pytest
import yaml

from app.core.exceptions import ConfigurationError
from app.models.verification import PillarKind, StepType
from app.services.verification.catalog import (
    CONTACT_VERIFICATION_STEP,
    get_step_catalog,
    load_catalog_file,
    parse_catalog,
)


@pytest.fixture
def raw_catalog():
    return {
        "version": "test",
        "pillars": [
            {
                "pillar": kind.value,
                "weight": 25,
                "steps": [
                    {"name": "Second", "order": 2, "type": "manual", "checklist": ["b"]},
                    {"name": "First", "order": 1, "type": "automatic", "checklist": ["a"]},
                ],
            }
            for kind in PillarKind
        ],
    }


def test_bundled_catalog_shape():
    catalog = get_step_catalog()

    assert catalog.version == "v1"
    assert [p.pillar for p in catalog.pillars] == list(PillarKind)
    assert sum(p.weight for p in catalog.pillars) == 100
    assert all(p.weight == 25 for p in catalog.pillars)
    assert catalog.step_count == 11
    assert [len(catalog.pillar(kind).steps) for kind in PillarKind] == [3, 2, 3, 3]


def test_bundled_catalog_step_names_and_types():
    catalog = get_step_catalog()

    personal = catalog.pillar(PillarKind.PERSONAL_INFO)
    assert [s.name for s in personal.steps] == ["Face Match", CONTACT_VERIFICATION_STEP, "Government ID"]
    assert [s.type for s in personal.steps] == [StepType.AUTOMATIC, StepType.AUTOMATIC, StepType.MANUAL]

    school = catalog.pillar(PillarKind.SCHOOL)
    assert [s.type for s in school.steps] == [StepType.EXTERNAL, StepType.AUTOMATIC, StepType.MANUAL]
    assert all(step.checklist for pillar in catalog.pillars for step in pillar.steps)


def test_steps_sorted_by_order(raw_catalog):
    catalog = parse_catalog(raw_catalog)

    steps = catalog.pillar(PillarKind.DOCUMENTS).steps
    assert [s.name for s in steps] == ["First", "Second"]
    checklist = steps[0].requirement_checklist()
    assert checklist[0].requirement == "a"
    assert checklist[0].met is False


def test_weights_must_sum_to_100(raw_catalog):
    raw_catalog["pillars"][0]["weight"] = 30

    with pytest.raises(ConfigurationError, match="Invalid verification step catalog"):
        parse_catalog(raw_catalog)


def test_every_pillar_kind_required(raw_catalog):
    raw = copy.deepcopy(raw_catalog)
    raw["pillars"] = raw["pillars"][:3]
    raw["pillars"][0]["weight"] = 50

    with pytest.raises(ConfigurationError):
        parse_catalog(raw)


def test_duplicate_pillar_rejected(raw_catalog):
    raw_catalog["pillars"][3]["pillar"] = PillarKind.PERSONAL_INFO.value

    with pytest.raises(ConfigurationError):
        parse_catalog(raw_catalog)


def test_duplicate_step_order_rejected(raw_catalog):
    raw_catalog["pillars"][1]["steps"][0]["order"] = 1

    with pytest.raises(ConfigurationError):
        parse_catalog(raw_catalog)


def test_duplicate_step_name_rejected(raw_catalog):
    raw_catalog["pillars"][1]["steps"][0]["name"] = "First"

    with pytest.raises(ConfigurationError):
        parse_catalog(raw_catalog)


def test_unknown_step_type_rejected(raw_catalog):
    raw_catalog["pillars"][0]["steps"][0]["type"] = "telepathic"

    with pytest.raises(ConfigurationError):
        parse_catalog(raw_catalog)


def test_version_mismatch(raw_catalog):
    with pytest.raises(ConfigurationError, match="version mismatch"):
        parse_catalog(raw_catalog, expected_version="v2")


def test_load_catalog_file(tmp_path: Path, raw_catalog):
    path = tmp_path / "catalog.yaml"
    path.write_text(yaml.safe_dump(raw_catalog), encoding="utf-8")

    catalog = load_catalog_file(path, expected_version="test")

    assert catalog.version == "test"
    assert catalog.step_count == 8


def test_load_catalog_file_missing(tmp_path: Path):
    with pytest.raises(ConfigurationError, match="not found"):
        load_catalog_file(tmp_path / "missing.yaml")
