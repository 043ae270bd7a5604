"""State-transition core of a shielded value pool: commitments, nullifiers, fees and batches."""
