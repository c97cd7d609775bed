"""Settings, exceptions and clock."""
