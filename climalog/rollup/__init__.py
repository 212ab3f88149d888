"""Day/Month/Year min-max summaries."""
