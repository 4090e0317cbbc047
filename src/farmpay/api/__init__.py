"""HTTP API for the payment core."""
