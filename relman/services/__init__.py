"""Release operations: reversioning, publishing and promotion."""
