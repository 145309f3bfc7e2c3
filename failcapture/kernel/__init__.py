"""Shared plumbing: atomic writes, logging, config, errors."""
