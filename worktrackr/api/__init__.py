"""HTTP surface of the ticket engine."""
