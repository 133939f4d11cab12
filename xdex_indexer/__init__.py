"""XDEX swap indexer for the X1 network."""
