"""Tests for booking_bot."""
