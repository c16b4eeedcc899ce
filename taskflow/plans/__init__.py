"""Plans: long-running goals that produce one task per day while active."""
