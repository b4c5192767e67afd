"""HTTP server exposing the signature engine."""
