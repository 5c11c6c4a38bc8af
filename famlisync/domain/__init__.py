"""Link registry, grouping, sync coordination and travel derivation."""
