from __future__ import annotations

import json

import pytest

from proxy_reconfigurer.services.events import (
    IgnoredEvent,
    ServiceLifecycleEvent,
    Transition,
    classify,
    parse_event,
)


def test_service_frame_becomes_lifecycle_event():
    frame = json.dumps({"type": "service", "uuid": "abc", "state": "Scaling", "action": "update"})

    event = parse_event(frame)

    assert event == ServiceLifecycleEvent(uuid="abc", state="Scaling")
    assert event.transition is Transition.TRANSITIONAL


@pytest.mark.parametrize(
    ("frame", "reason"),
    [
        ("not json", "invalid_json"),
        ("[1, 2]", "not_an_object"),
        (json.dumps({"type": "container", "uuid": "x", "state": "Running"}), "other_kind"),
        (json.dumps({"type": "service", "state": "Running"}), "missing_fields"),
        (json.dumps({"type": "service", "uuid": "x", "state": None}), "missing_fields"),
    ],
)
def test_unusable_frames_are_ignored(frame, reason):
    event = parse_event(frame)

    assert isinstance(event, IgnoredEvent)
    assert event.reason == reason


def test_dict_payloads_are_accepted():
    assert parse_event({"type": "service", "uuid": "a", "state": "Stopped"}) == ServiceLifecycleEvent("a", "Stopped")


@pytest.mark.parametrize(
    ("state", "expected"),
    [
        ("Starting", Transition.TRANSITIONAL),
        ("Terminating", Transition.TRANSITIONAL),
        ("Not running", Transition.SETTLED),
        ("Terminated", Transition.SETTLED),
        ("Partly running", Transition.OTHER),
        ("running", Transition.OTHER),
    ],
)
def test_classify(state, expected):
    assert classify(state) is expected
