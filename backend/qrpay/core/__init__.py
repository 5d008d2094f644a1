"""Core utilities: wire codec, errors, clock and event bus."""
