"""Change event — one created/updated item, the trigger for a broadcast."""

from typing import Any

from pydantic import BaseModel, Field


class ChangeEvent(BaseModel):
    """The attribute set of a created or updated item.

    Learn: Which attribute identifies the item (the topic key) is
    deployment config, not part of the event. The attributes are
    forwarded verbatim to every matched subscriber.
    """

    attributes: dict[str, Any] = Field(default_factory=dict)
