"""Common utilities for naversign."""
