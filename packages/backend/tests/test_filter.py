"""Interest filter tests — pure functions, no registry or transport."""

import pytest

from itemwire.fanout.filter import (
    MissingTopicAttribute,
    matches,
    select_recipients,
    topic_value_of,
)
from itemwire.registry import Subscription

from conftest import TOPIC_KEY, make_subscription


def test_example_vehicle_match():
    """A watches V1, B watches V2; an event for V1 matches only A."""
    a = make_subscription("A", "V1")
    b = make_subscription("B", "V2")
    event = {"vehicleId": "V1", "speed": 42}

    assert matches(event, TOPIC_KEY, a) is True
    assert matches(event, TOPIC_KEY, b) is False
    assert select_recipients(event, TOPIC_KEY, [a, b]) == [a]


def test_filter_is_sound_and_complete():
    """N records with distinct pairs, event matches exactly M of them."""
    records = [make_subscription(f"c{i}", f"V{i}") for i in range(10)]
    # Same value under a different topic key must not match
    records += [make_subscription(f"other{i}", "V3", topic_key="driverId") for i in range(3)]
    # Three more connections watching V3
    watchers = [make_subscription(f"w{i}", "V3") for i in range(3)]
    records += watchers

    selected = select_recipients({"vehicleId": "V3"}, TOPIC_KEY, records)

    assert len(selected) == 4
    assert {r.connection_id for r in selected} == {"c3", "w0", "w1", "w2"}


def test_topic_key_must_match_configured_name():
    record = make_subscription("A", "V1", topic_key="driverId")
    assert matches({"vehicleId": "V1", "driverId": "V1"}, TOPIC_KEY, record) is False


def test_numeric_event_values_compare_as_strings():
    record = make_subscription("A", "42")
    assert matches({"vehicleId": 42}, TOPIC_KEY, record) is True


def test_projected_records_without_topic_never_match():
    record = Subscription(connection_id="A")
    assert select_recipients({"vehicleId": "V1"}, TOPIC_KEY, [record]) == []


@pytest.mark.parametrize("attributes", [{}, {"speed": 42}, {"vehicleId": None}, {"vehicleId": ""}])
def test_missing_topic_attribute(attributes):
    """No value for the topic key → no candidate set at all."""
    assert topic_value_of(attributes, TOPIC_KEY) is None
    with pytest.raises(MissingTopicAttribute):
        select_recipients(attributes, TOPIC_KEY, [make_subscription("A", "V1")])


def test_missing_topic_attribute_with_no_records():
    """Even an empty registry can't hide a malformed event."""
    with pytest.raises(MissingTopicAttribute):
        select_recipients({"speed": 1}, TOPIC_KEY, [])
