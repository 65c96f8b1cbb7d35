"""FastAPI read and admin API for merged IPO records."""
