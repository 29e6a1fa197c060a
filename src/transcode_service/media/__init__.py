"""Media record handling: resolution, readiness and recovery."""
