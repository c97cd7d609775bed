"""Database engine, declarative base and the session store.

Use explicit imports: ``from livedesk.db.store import Store``, etc.
"""
