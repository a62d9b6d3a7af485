"""HTTP API: Starlette app, route modules and the uvicorn runner."""
