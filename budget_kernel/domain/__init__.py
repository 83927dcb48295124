"""Pure domain layer: value objects, state machines and comparisons. Zero I/O."""
