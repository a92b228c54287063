"""
Control-token parsing for interview and module replies.

The coach model embeds machine-readable blocks in its replies:
    [[OPTIONS]] one per line [[END_OPTIONS]]
    [[INTERVIEW_COMPLETE]]
    [[VALUE_BULLETS]] ... [[END_VALUE_BULLETS]]
    [[PLAN_CARD]] {json} [[END_PLAN_CARD]]
    [[MODULE_COMPLETE]]
    [[SUMMARY]] ... [[END_SUMMARY]]
All of them are removed from the text the user sees.
"""
import re
from dataclasses import dataclass
from typing import List, Optional

from app.services.response_parser import LLMResponseParseError, extract_json_object
from app.utils.logger import logger

OPTIONS_RE = re.compile(r"\[\[OPTIONS\]\]([\s\S]*?)\[\[END_OPTIONS\]\]")
VALUE_BULLETS_RE = re.compile(r"\[\[VALUE_BULLETS\]\]([\s\S]*?)\[\[END_VALUE_BULLETS\]\]")
PLAN_CARD_RE = re.compile(r"\[\[PLAN_CARD\]\]([\s\S]*?)\[\[END_PLAN_CARD\]\]")
SUMMARY_RE = re.compile(r"\[\[SUMMARY\]\]([\s\S]*?)\[\[END_SUMMARY\]\]")
INTERVIEW_COMPLETE = "[[INTERVIEW_COMPLETE]]"
MODULE_COMPLETE = "[[MODULE_COMPLETE]]"

_BLOCKS = (OPTIONS_RE, VALUE_BULLETS_RE, PLAN_CARD_RE, SUMMARY_RE)


@dataclass
class ParsedReply:
    reply: str
    options: Optional[List[str]] = None
    interview_complete: bool = False
    value_bullets: Optional[str] = None
    plan_card: Optional[dict] = None
    module_complete: bool = False
    summary: Optional[str] = None


def parse_reply(text: str) -> ParsedReply:
    text = text or ""
    parsed = ParsedReply(reply="")

    match = OPTIONS_RE.search(text)
    if match:
        options = [line.strip() for line in match.group(1).strip().split("\n")]
        parsed.options = [opt for opt in options if opt] or None

    if INTERVIEW_COMPLETE in text:
        parsed.interview_complete = True
        match = VALUE_BULLETS_RE.search(text)
        if match:
            parsed.value_bullets = match.group(1).strip()

    match = PLAN_CARD_RE.search(text)
    if match:
        try:
            parsed.plan_card = extract_json_object(match.group(1))
        except LLMResponseParseError as e:
            logger.warning("chat.plan_card_unparseable", extra={"error": str(e)})

    if MODULE_COMPLETE in text:
        parsed.module_complete = True
    match = SUMMARY_RE.search(text)
    if match:
        parsed.summary = match.group(1).strip()

    visible = text
    for pattern in _BLOCKS:
        visible = pattern.sub("", visible)
    visible = visible.replace(INTERVIEW_COMPLETE, "").replace(MODULE_COMPLETE, "")
    parsed.reply = visible.strip()
    return parsed
