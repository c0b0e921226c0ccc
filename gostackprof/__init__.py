"""Goroutine stack usage profiles from Go binaries and goroutine profiles."""

__version__ = "0.1.0"
