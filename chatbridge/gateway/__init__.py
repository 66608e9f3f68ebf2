"""Request translation and streaming multiplexer."""
