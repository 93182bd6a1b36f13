"""Tests for the request-scoped analytics client."""

import logging

from storyflow.services.analytics import AnalyticsClient, EventType, get_analytics


def test_track_buffers_events_with_session():
    client = AnalyticsClient()
    client.start(session_id="sess-1", user_id="u1")

    client.track(EventType.CHOICE_MADE, choice_id="A")

    [event] = client.events
    assert event["event_type"] == "choice_made"
    assert event["session_id"] == "sess-1"
    assert event["user_id"] == "u1"
    assert event["metadata"] == {"choice_id": "A"}


def test_clients_do_not_share_state():
    first, second = AnalyticsClient("a"), AnalyticsClient("b")
    first.track(EventType.STORY_STARTED)
    assert second.events == []


def test_close_flushes_to_log(caplog):
    client = AnalyticsClient("sess-1")
    client.track(EventType.STORY_COMPLETED, ending_tag="fantasy_hidden_truth")

    with caplog.at_level(logging.INFO, logger="storyflow.analytics"):
        client.close()

    assert client.events == []
    assert "story_completed" in caplog.text
    assert "fantasy_hidden_truth" in caplog.text


async def test_dependency_closes_client(caplog):
    dependency = get_analytics()
    client = await dependency.__anext__()
    client.track(EventType.STORY_STARTED)

    with caplog.at_level(logging.INFO, logger="storyflow.analytics"):
        await dependency.aclose()

    assert client.events == []
    assert "story_started" in caplog.text
