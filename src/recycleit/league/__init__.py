"""League sessions, standings and promotion/relegation."""
