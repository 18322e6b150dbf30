"""Interest filter — which subscriptions care about a change event.

Pure functions, no I/O. A record matches when it was registered for
the configured topic key AND its value equals the event's value for
that key.
"""

from collections.abc import Iterable, Mapping
from typing import Any, Optional

from itemwire.registry.models import Subscription


class MissingTopicAttribute(Exception):
    """The change event carries no value for the topic key."""


def topic_value_of(attributes: Mapping[str, Any], topic_key_name: str) -> Optional[str]:
    """The event's identifier for topic_key_name, or None if absent.

    Records always store strings, so scalar values (e.g. numeric ids)
    are compared by their string form.
    """
    value = attributes.get(topic_key_name)
    if value is None or value == "":
        return None
    return value if isinstance(value, str) else str(value)


def matches(
    attributes: Mapping[str, Any], topic_key_name: str, record: Subscription
) -> bool:
    value = topic_value_of(attributes, topic_key_name)
    if value is None:
        raise MissingTopicAttribute(topic_key_name)
    return record.topic_key == topic_key_name and record.topic_value == value


def select_recipients(
    attributes: Mapping[str, Any],
    topic_key_name: str,
    records: Iterable[Subscription],
) -> list[Subscription]:
    """Subset of records interested in this event.

    Raises MissingTopicAttribute up front — an event without the topic
    attribute has no candidate set at all, it is not filtered per record.
    """
    if topic_value_of(attributes, topic_key_name) is None:
        raise MissingTopicAttribute(topic_key_name)
    return [r for r in records if matches(attributes, topic_key_name, r)]
