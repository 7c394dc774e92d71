from computer_use_agent.markers import extract_markers


def test_plain_labels():
    text = (
        "Intent Frame: search for cats\n"
        "Visual State: Google home page\n"
        "Next Action: click the search box\n"
        "Expected Outcome: the box is focused"
    )
    assert extract_markers(text) == {
        "intent_frame": "search for cats",
        "visual_state": "Google home page",
        "next_action": "click the search box",
        "expected_outcome": "the box is focused",
    }


def test_markdown_labels():
    text = "**Intent Frame:** find the docs\n- Next Action: scroll down"
    assert extract_markers(text) == {
        "intent_frame": "find the docs",
        "next_action": "scroll down",
    }


def test_multiline_body():
    text = "Visual State: a results page\nwith ten links\nNext Action: click the first"
    assert extract_markers(text)["visual_state"] == "a results page\nwith ten links"


def test_text_without_labels():
    assert extract_markers("I will click the button.") == {}
    assert extract_markers("") == {}
    assert extract_markers(None) == {}
