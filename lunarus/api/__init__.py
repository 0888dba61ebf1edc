"""HTTP routers, dependencies, schemas and metrics."""
