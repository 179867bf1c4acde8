"""Grid model, cell validation and grid instance management."""
