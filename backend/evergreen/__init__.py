"""Evergreen LMS backend: course commerce, seats and learning progress."""
