"""
Customer persona instructions and fixed replies.

Supports scenario-based configuration:
- System prompt template per scenario (the role-playing customer)
- Fixed success acknowledgment and deterministic hint replies
- Fixed welcome / completion announcements for scripted turns
- Scenario selection via REHEARSAL_SCENARIO

Scenarios are stored as YAML and read with PyYAML's safe_load.
"""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from rehearsal.session import Subject


# Built-in fallback when no scenario file can be found.
DEFAULT_SCENARIO: Dict[str, Any] = {
    "name": "default",
    "persona_prompt": (
        "You are a customer who is looking for a part for a {machine_model}. "
        'The part description is "{part_description}". You only have vague knowledge '
        "about where the part is located on the machine, and you are NOT allowed to "
        "give the part number directly to the user. You can provide vague hints if the "
        "user is struggling, but act uncertain and avoid giving specific details unless "
        "absolutely necessary. You can give information in small pieces, such as the "
        "first breadcrumb level if asked multiple times."
    ),
    "success_text": "Wow, you found it! That's the correct part number for the {part_description}.",
    "hint_prefix": "Hmm, I'm not sure, but I think this part might be related to the {machine_model}.",
    "hint_with_location": " You might want to check near the {location}, but I can't say for sure.",
    "hint_without_location": " It could be somewhere on the {machine_model}, but I'm not entirely sure.",
    "welcome_text": "Welcome! An AI customer will call you about a part. Ready to get started?",
    "completion_text": "Thanks for your help today. That's the end of this call.",
}

BREADCRUMB_SEPARATOR = " > "


def _get_scenarios_dir() -> Path:
    return Path(__file__).parent / "scenarios"


def _load_file(path: Path) -> Dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Scenario file {path} must contain a mapping at top-level")
    return data


def load_scenario(scenario_name: str = "default") -> Dict[str, Any]:
    """
    Load a scenario, filling any missing keys from the built-in default.

    Resolution order:
    1) <name>.yaml / <name>.yml
    2) default.yaml / default.yml
    3) DEFAULT_SCENARIO
    """
    scenarios_dir = _get_scenarios_dir()
    candidates = [
        scenarios_dir / f"{scenario_name}.yaml",
        scenarios_dir / f"{scenario_name}.yml",
        scenarios_dir / "default.yaml",
        scenarios_dir / "default.yml",
    ]
    for candidate in candidates:
        if candidate.exists():
            return {**DEFAULT_SCENARIO, **_load_file(candidate)}
    return dict(DEFAULT_SCENARIO)


def build_system_instruction(subject: Subject, scenario: Optional[Dict[str, Any]] = None) -> str:
    """System prompt casting the model as a customer who holds `subject`."""
    scenario = scenario or DEFAULT_SCENARIO
    return scenario["persona_prompt"].format(
        machine_model=subject.machine_model,
        part_description=subject.part_description,
    ).strip()


def success_acknowledgment(subject: Subject, scenario: Optional[Dict[str, Any]] = None) -> str:
    scenario = scenario or DEFAULT_SCENARIO
    return scenario["success_text"].format(
        machine_model=subject.machine_model,
        part_description=subject.part_description,
    )


def first_breadcrumb_level(breadcrumb: str) -> str:
    return breadcrumb.split(BREADCRUMB_SEPARATOR)[0].strip()


def hint_reply(utterance: str, subject: Subject, scenario: Optional[Dict[str, Any]] = None) -> str:
    """
    Deterministic hint used when the model gives no content.

    Only the first breadcrumb level is ever revealed, and only once the
    trainee has named the part description.
    """
    scenario = scenario or DEFAULT_SCENARIO
    fields = {
        "machine_model": subject.machine_model,
        "part_description": subject.part_description,
        "location": first_breadcrumb_level(subject.breadcrumb),
    }
    reply = scenario["hint_prefix"].format(**fields)
    if subject.part_description in utterance:
        reply += scenario["hint_with_location"].format(**fields)
    else:
        reply += scenario["hint_without_location"].format(**fields)
    return reply


def get_welcome_text(scenario: Optional[Dict[str, Any]] = None) -> str:
    return (scenario or DEFAULT_SCENARIO)["welcome_text"].strip()


def get_completion_text(scenario: Optional[Dict[str, Any]] = None) -> str:
    return (scenario or DEFAULT_SCENARIO)["completion_text"].strip()
