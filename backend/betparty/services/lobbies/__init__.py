"""Lobby domain services: state machine, answers, settlement and timers.

Everything here takes an explicit ``LobbyContext`` (record store, change
feed, settings, logger, clock) so HTTP routes, socket handlers and
background workers share the same rules without module-level clients.
"""
