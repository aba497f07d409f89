"""HTTP routers, mounted under /api by app.main."""
