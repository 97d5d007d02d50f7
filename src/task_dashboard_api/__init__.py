"""Task automation dashboard API."""
