from __future__ import annotations

from agent_bridge.chat.timeline import ConversationTimeline
from agent_bridge.models import create_assistant_message, create_user_message


def test_upsert_replaces_in_place():
    timeline = ConversationTimeline([create_user_message("question", "u1")])
    assert timeline.upsert(create_assistant_message("Hel", "a1"))
    assert timeline.upsert(create_assistant_message("Hello", "a1"))

    assert [m.id for m in timeline] == ["u1", "a1"]
    assert timeline.last is not None
    assert timeline.last.text == "Hello"


def test_upsert_skips_unchanged_text():
    timeline = ConversationTimeline()
    timeline.upsert(create_assistant_message("same", "a1"))
    assert not timeline.upsert(create_assistant_message("same", "a1"))
    assert len(timeline) == 1


def test_messages_is_a_copy():
    timeline = ConversationTimeline()
    timeline.append(create_user_message("hi", "u1"))
    timeline.messages.clear()
    assert len(timeline) == 1


def test_replace_and_clear():
    timeline = ConversationTimeline([create_user_message("old", "u1")])
    timeline.replace_all([create_user_message("new", "u2")])
    assert timeline.get("u1") is None
    assert timeline.index_of("u2") == 0
    timeline.clear()
    assert timeline.last is None
