"""FastAPI dependencies for principals and services."""
