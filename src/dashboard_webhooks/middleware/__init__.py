"""aiohttp middlewares."""
