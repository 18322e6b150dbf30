"""itemwire — real-time item change notifications over WebSockets.

Subscribers connect to /ws naming the item they care about. When an item
is created or updated, only the subscribers watching that item receive
the change, and subscribers that turn out to be gone are pruned.
"""

__version__ = "0.1.0"
