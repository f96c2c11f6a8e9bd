"""Command line tools for the kiosk media mirror."""
