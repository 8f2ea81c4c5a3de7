"""Local-first clinic records with debounced remote sync."""
