"""HTTP surface of the support service."""
