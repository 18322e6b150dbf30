"""Fan-out — filter a change event down to interested connections and deliver it.

Learn: Three pieces, each testable on its own:
1. filter — pure predicate: does this subscription care about this event?
2. transport — send one payload to one connection, report a tagged outcome
3. broadcaster — runs a full cycle and evicts connections reported as gone
"""
