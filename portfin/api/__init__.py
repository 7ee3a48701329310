"""HTTP surface for portfin."""
