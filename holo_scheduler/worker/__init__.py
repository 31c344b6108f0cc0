"""Background runner: worker-owned store, message channel, and wake handling."""
