"""Monthly TBM report approval service."""
