"""One-time startup bonus: device-bound claims and eligibility."""
