"""Duel domain services: word engine, state machine, matchmaking, sessions.

This package contains the duel core. Pure logic (words, state) is kept
free of transport concerns; sessions and the registry own locking, timers
and broadcasting, and are driven by the Socket.IO handlers.
"""
