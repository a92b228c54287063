from app.services.chat_tokens import parse_reply


def test_plain_reply_untouched():
    parsed = parse_reply("What does a good week look like?")
    assert parsed.reply == "What does a good week look like?"
    assert parsed.options is None
    assert not parsed.interview_complete and not parsed.module_complete


def test_options_are_extracted_and_hidden():
    parsed = parse_reply("Which fits?\n[[OPTIONS]]\nStay\n\nLeave\n[[END_OPTIONS]]")
    assert parsed.options == ["Stay", "Leave"]
    assert parsed.reply == "Which fits?"


def test_interview_completion_with_plan_card():
    text = (
        "Here's the plan.\n[[INTERVIEW_COMPLETE]]\n"
        "[[VALUE_BULLETS]]\n- Clarity\n- A script\n[[END_VALUE_BULLETS]]\n"
        '[[PLAN_CARD]]\n{"name": "Alex", "modules": []}\n[[END_PLAN_CARD]]'
    )
    parsed = parse_reply(text)
    assert parsed.interview_complete
    assert parsed.value_bullets == "- Clarity\n- A script"
    assert parsed.plan_card == {"name": "Alex", "modules": []}
    assert parsed.reply == "Here's the plan."


def test_unparseable_plan_card_is_dropped():
    parsed = parse_reply("Done.\n[[PLAN_CARD]]\nnot json\n[[END_PLAN_CARD]]")
    assert parsed.plan_card is None
    assert parsed.reply == "Done."


def test_module_completion_with_summary():
    parsed = parse_reply("Great work.\n[[MODULE_COMPLETE]]\n[[SUMMARY]]\nYou chose to stay.\n[[END_SUMMARY]]")
    assert parsed.module_complete
    assert parsed.summary == "You chose to stay."
    assert parsed.reply == "Great work."
