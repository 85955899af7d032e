"""CLI commands, loaded lazily by StrmarrGroup."""
