from reelcraft.dialogue import DialogueLine, parse_dialogue


def test_parses_speaker_lines():
    script = parse_dialogue(
        "Adam: Did you know octopuses have *three* hearts?\n"
        "\n"
        "Bella : No ~way~!\n"
        "Adam: Each arm can _taste_ things.\n"
    )
    assert script.lines == [
        DialogueLine("Adam", "Did you know octopuses have three hearts?"),
        DialogueLine("Bella", "No way!"),
        DialogueLine("Adam", "Each arm can taste things."),
    ]
    assert script.speakers() == ["Adam", "Bella"]
    assert script.full_text() == (
        "Did you know octopuses have three hearts? No way! Each arm can taste things."
    )


def test_skips_stage_directions_and_unlabelled_lines():
    script = parse_dialogue(
        "(Adam leans in)\n"
        "[music]\n"
        "Bella: (sighs)\n"
        "just some narration\n"
        "Speaker 2: Hello there\n"
    )
    assert script.lines == [DialogueLine("Speaker 2", "Hello there")]


def test_empty_script():
    script = parse_dialogue("no labels here\nat all")
    assert script.is_empty
    assert script.speakers() == []
    assert script.full_text() == ""
