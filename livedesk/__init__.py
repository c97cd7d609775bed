"""LiveDesk: live operator support sessions with queueing and escalation."""
