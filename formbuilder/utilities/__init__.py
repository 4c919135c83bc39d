"""Form Builder utilities."""
