"""Interactive console dashboard."""
