"""Reconcile entrypoint and the watch/queue machinery that drives it."""
