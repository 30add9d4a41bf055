"""HTTP API for submitting and tracking verification runs."""
