"""HTTP surface, runtime wiring and CLI for the treasury autopilot."""
