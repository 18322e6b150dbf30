"""Change events — the trigger for a broadcast cycle.

Learn: Events arrive two ways:
1. HTTP POST /api/v1/events (see itemwire.api.events)
2. Redis PUBLISH on the change channel, consumed by ChangeFeedListener
   running in its own process (itemwire.events.main)
"""
