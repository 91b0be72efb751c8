"""Face verification, liveness and geofence core for LaborOS attendance."""
