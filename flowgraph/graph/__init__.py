"""Graph model and pure graph algorithms: no I/O, no store, no registry state."""
