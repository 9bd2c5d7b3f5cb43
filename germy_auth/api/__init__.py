"""HTTP adapter for the identity engine."""
