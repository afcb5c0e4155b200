"""Shared plumbing: config loader, presence reporting, watchdog, errors."""
