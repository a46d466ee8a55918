"""
Tests for persona instructions and scenario loading.
"""
from conftest import SUBJECT
from voice_turn.instructions import (
    DEFAULT_SCENARIO,
    build_system_instruction,
    first_breadcrumb_level,
    get_completion_text,
    get_welcome_text,
    hint_reply,
    load_scenario,
    success_acknowledgment,
)


def test_load_default_scenario_has_all_keys():
    scenario = load_scenario("default")
    assert scenario["name"] == "default"
    for key in DEFAULT_SCENARIO:
        assert scenario[key]


def test_unknown_scenario_falls_back_to_default():
    assert load_scenario("does-not-exist") == load_scenario("default")


def test_system_instruction_names_machine_and_part_but_not_number():
    instruction = build_system_instruction(SUBJECT)
    assert "Komatsu PC210-11" in instruction
    assert "Hydraulic return filter" in instruction
    assert "AT12345" not in instruction
    assert "NOT allowed to give the part number" in instruction


def test_success_acknowledgment_mentions_part():
    assert success_acknowledgment(SUBJECT) == (
        "Wow, you found it! That's the correct part number for the Hydraulic return filter."
    )


def test_first_breadcrumb_level():
    assert first_breadcrumb_level("Engine > Fuel System > Filters") == "Engine"
    assert first_breadcrumb_level("Cab") == "Cab"


def test_hint_reveals_first_level_only_after_description_named():
    vague = hint_reply("Which part do you need?", SUBJECT)
    located = hint_reply("Is the Hydraulic return filter broken?", SUBJECT)

    assert "Hydraulic System" not in vague
    assert "check near the Hydraulic System" in located
    assert "Return Filter" not in located


def test_welcome_and_completion_texts_from_yaml():
    scenario = load_scenario("default")
    assert get_welcome_text(scenario).startswith("Welcome to the app")
    assert "start a new simulation" in get_completion_text(scenario)
