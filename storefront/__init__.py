"""The web layer: Starlette routes, pages and middleware over `marketplace`."""
