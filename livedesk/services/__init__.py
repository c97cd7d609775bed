"""Support desk services.

Imports are intentionally NOT eagerly loaded here. Use explicit imports:
    from livedesk.services.desk import SupportDesk
    from livedesk.services.queue import QueueEngine
"""
