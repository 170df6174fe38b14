"""HTTP surface for the health monitor."""
