"""Client helpers for the staff dashboard and support pages."""
