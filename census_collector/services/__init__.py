"""Collection pipeline services."""
