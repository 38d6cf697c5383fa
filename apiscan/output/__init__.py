"""Console tables and structured report formats."""
