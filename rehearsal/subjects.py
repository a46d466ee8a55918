"""
Machine / part catalog that session subjects are drawn from.

The catalog file is YAML:

    machines:
      - model: "Komatsu PC210"
        parts:
          - description: "Hydraulic filter"
            part_number: "AT12345"
            breadcrumb: "Hydraulic System > Filters > Return Filter"

Every (machine, part) pair is equally likely to be picked.
"""
import random
from pathlib import Path
from typing import Iterable, List, Optional, Union

import yaml

from logging_setup import get_logger, Component
from .errors import NoSubjectsAvailable
from .session import Subject

logger = get_logger(Component.SESSION_MANAGER)

DEFAULT_SUBJECTS_FILE = Path(__file__).parent / "data" / "subjects.yaml"


class SubjectCatalog:
    """Flattened list of subjects with a uniform pick."""

    def __init__(self, subjects: Iterable[Subject]):
        self._subjects: List[Subject] = list(subjects)

    def __len__(self) -> int:
        return len(self._subjects)

    @property
    def subjects(self) -> List[Subject]:
        return list(self._subjects)

    def pick(self, rng: Optional[random.Random] = None) -> Subject:
        if not self._subjects:
            raise NoSubjectsAvailable("No machines with parts are available")
        return (rng or random).choice(self._subjects)

    @classmethod
    def from_mapping(cls, data: dict) -> "SubjectCatalog":
        subjects = []
        for machine in data.get("machines") or []:
            model = machine.get("model")
            if not model:
                raise ValueError("Every machine needs a model")
            # Machines without parts are skipped so they can never be drawn.
            for part in machine.get("parts") or []:
                subjects.append(
                    Subject(
                        machine_model=model,
                        part_description=part["description"],
                        part_number=str(part["part_number"]),
                        breadcrumb=part.get("breadcrumb", ""),
                    )
                )
        return cls(subjects)

    @classmethod
    def from_yaml(cls, path: Union[str, Path, None] = None) -> "SubjectCatalog":
        path = Path(path) if path else DEFAULT_SUBJECTS_FILE
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Subjects file {path} must contain a mapping at top-level")
        catalog = cls.from_mapping(data)
        logger.info("Subject catalog loaded", path=str(path), subjects=len(catalog))
        return catalog
