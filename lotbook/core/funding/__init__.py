"""Cash movement validation and period aggregation."""
