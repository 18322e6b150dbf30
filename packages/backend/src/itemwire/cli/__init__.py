"""itemwire command-line interface."""
