"""Appointment change tracking and notification eligibility."""
