"""Trigger matching for channel-driven jobs.

A job's ``[input]`` matches an inbound message when:
1. The channel names are equal
2. The sender is in ``allowed_senders`` (when that list is set)
3. The trigger is empty or ``*``, or the text contains / starts with /
   ends with the trigger, per ``trigger_match``

Matching is case-sensitive. On a match the trigger is removed from the text
that the job sees as ``{% message %}``.
"""

from vatic.bus.events import InboundMessage
from vatic.config.schema import InputConfig, JobConfig

WILDCARD = "*"


def _is_wildcard(trigger: str | None) -> bool:
    return not trigger or trigger == WILDCARD


def _sender_allowed(input: InputConfig, sender: str) -> bool:
    if input.allowed_senders is None:
        return True
    return sender in input.allowed_senders


def _text_matches(trigger: str, text: str, mode: str) -> bool:
    if mode == "start":
        return text.startswith(trigger)
    if mode == "end":
        return text.endswith(trigger)
    return trigger in text


def strip_trigger(text: str, trigger: str, mode: str = "anywhere") -> str:
    """
    Remove one raw occurrence of ``trigger`` from ``text``.

    The first occurrence is removed, the last one for ``end``. No whole-word
    logic applies: ``"weather"`` is removed from ``"weatherman"`` too. The
    text on both sides is joined with a single space and the result trimmed.
    """
    if mode == "end":
        index = text.rfind(trigger)
    else:
        index = text.find(trigger)
    if index < 0:
        return text.strip()
    before = text[:index].rstrip()
    after = text[index + len(trigger):].lstrip()
    if before and after:
        return f"{before} {after}".strip()
    return (before or after).strip()


def match_trigger(input: InputConfig, msg: InboundMessage) -> InboundMessage | None:
    """Return the message with its trigger stripped, or None on no match."""
    if input.channel != msg.channel:
        return None
    if not _sender_allowed(input, msg.sender):
        return None

    trigger = input.trigger
    if _is_wildcard(trigger):
        return msg
    if not _text_matches(trigger, msg.text, input.trigger_match):
        return None
    return msg.with_text(strip_trigger(msg.text, trigger, input.trigger_match))


def match_jobs(jobs: list[JobConfig], msg: InboundMessage) -> list[tuple[JobConfig, InboundMessage]]:
    """Every job whose input matches ``msg``, with the message as that job sees it."""
    matches = []
    for job in jobs:
        if job.input is None:
            continue
        stripped = match_trigger(job.input, msg)
        if stripped is not None:
            matches.append((job, stripped))
    return matches
