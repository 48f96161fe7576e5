"""Domain repositories built on the generic Repository base."""
