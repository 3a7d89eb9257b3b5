"""Services for the sandboxed test server."""
