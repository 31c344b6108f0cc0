"""HTTP surface for the task scheduler."""
