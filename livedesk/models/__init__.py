"""SQLAlchemy ORM models.

Individual models should be imported explicitly:
    from livedesk.models.operator import Operator

All models are imported here so Alembic and ``Base.metadata.create_all``
see every table.
"""

from livedesk.models.chat_session import ChatSession
from livedesk.models.message import Message
from livedesk.models.operator import Operator
from livedesk.models.ticket import Ticket

__all__ = [
    "Operator",
    "ChatSession",
    "Message",
    "Ticket",
]
