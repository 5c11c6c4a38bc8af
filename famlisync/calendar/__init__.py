"""Calendar store models, recurrence expansion and store adapters."""
