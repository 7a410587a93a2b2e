"""Status API routers."""
