"""Inbound-message automation pipeline."""
