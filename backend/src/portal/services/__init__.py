"""Application services: upload transactions, normalization, scoped queries."""
