"""HopeDeeds: volunteer coordination service."""
