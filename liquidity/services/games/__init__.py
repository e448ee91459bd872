"""Game domain services: commands, scripted events, controllers and timers.

This package holds the game mechanics that HTTP routes and socket handlers
call into, keeping transport concerns separated from the clock model.
"""
