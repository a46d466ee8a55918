"""
Tests for the machine/part subject catalog.
"""
import random
from collections import Counter

import pytest

from rehearsal.errors import NoSubjectsAvailable
from rehearsal.subjects import SubjectCatalog


CATALOG_DATA = {
    "machines": [
        {
            "model": "Komatsu PC210-11",
            "parts": [
                {"description": "Hydraulic return filter", "part_number": "AT12345",
                 "breadcrumb": "Hydraulic System > Filters > Return Filter"},
                {"description": "Bucket tooth", "part_number": "KM20-70-14520",
                 "breadcrumb": "Work Equipment > Bucket > Teeth"},
            ],
        },
        {"model": "Machine without parts", "parts": []},
        {
            "model": "John Deere 6120M",
            "parts": [
                {"description": "Fuel filter element", "part_number": "RE533910",
                 "breadcrumb": "Engine > Fuel System > Filters"},
            ],
        },
    ]
}


def test_catalog_flattens_machine_part_pairs():
    catalog = SubjectCatalog.from_mapping(CATALOG_DATA)

    assert len(catalog) == 3
    assert {s.machine_model for s in catalog.subjects} == {"Komatsu PC210-11", "John Deere 6120M"}
    subject = catalog.subjects[0]
    assert subject.part_number == "AT12345"
    assert subject.breadcrumb == "Hydraulic System > Filters > Return Filter"


def test_numeric_part_numbers_become_strings():
    catalog = SubjectCatalog.from_mapping(
        {"machines": [{"model": "M", "parts": [{"description": "d", "part_number": 12345}]}]}
    )
    assert catalog.subjects[0].part_number == "12345"
    assert catalog.subjects[0].breadcrumb == ""


def test_machine_without_model_is_rejected():
    with pytest.raises(ValueError):
        SubjectCatalog.from_mapping({"machines": [{"parts": []}]})


def test_pick_is_uniform_over_pairs():
    catalog = SubjectCatalog.from_mapping(CATALOG_DATA)
    rng = random.Random(42)

    counts = Counter(catalog.pick(rng).part_number for _ in range(3000))

    assert set(counts) == {"AT12345", "KM20-70-14520", "RE533910"}
    for count in counts.values():
        assert 800 < count < 1200


def test_empty_catalog_raises():
    with pytest.raises(NoSubjectsAvailable):
        SubjectCatalog.from_mapping({"machines": []}).pick()


def test_packaged_catalog_loads():
    catalog = SubjectCatalog.from_yaml()
    assert len(catalog) > 0
    assert "AT12345" in {s.part_number for s in catalog.subjects}


def test_catalog_from_yaml_file(tmp_path):
    path = tmp_path / "subjects.yaml"
    path.write_text(
        "machines:\n"
        "  - model: Test Loader\n"
        "    parts:\n"
        "      - description: Seat belt\n"
        "        part_number: SB-1\n"
        "        breadcrumb: Cab > Seat\n",
        encoding="utf-8",
    )

    catalog = SubjectCatalog.from_yaml(path)

    assert [s.part_number for s in catalog.subjects] == ["SB-1"]


def test_catalog_file_must_be_mapping(tmp_path):
    path = tmp_path / "subjects.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ValueError):
        SubjectCatalog.from_yaml(path)
