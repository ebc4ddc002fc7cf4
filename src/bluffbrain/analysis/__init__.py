"""Decision telemetry: monitoring history and performance figures."""
