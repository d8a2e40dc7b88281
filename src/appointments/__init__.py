"""Appointment scheduling rules."""
