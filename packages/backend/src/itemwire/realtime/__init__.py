"""Real-time infrastructure — WebSocket subscribers.

Learn: Subscriptions flow in through /ws (connect registers, disconnect
deletes). Change notifications flow out through the fan-out layer,
which pushes to the sockets this process holds.
"""
