"""reqchain - chained HTTP request collections."""
