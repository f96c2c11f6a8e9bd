"""Kiosk playback client."""
