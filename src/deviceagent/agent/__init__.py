"""Device agent: record sync, remote commands and registration."""
