"""Feature slices built on the core, data and signal layers."""
