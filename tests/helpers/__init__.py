"""Test helper utilities for Showtime Notifier tests."""
