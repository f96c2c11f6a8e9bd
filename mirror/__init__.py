"""Kiosk Mirror: remote media folder mirroring and range-serving backend."""
