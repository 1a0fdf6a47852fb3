"""Bunko core package.

Modules:
- scanner: catalog sync of series folders into the database
- volumes: volume discovery and natural ordering
- covers / thumbnails: cover lookup and the two-tier cover cache
- library: favorites, tags, read state, rename and delete
- api: FastAPI app and routing
- monitor: Watchdog-based filesystem monitoring
- config: INI parsing and config object
"""
