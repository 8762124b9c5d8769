"""Live session domain services: store, scoring, leaderboard, rooms,
progression and notifications.

Socket handlers and HTTP routes talk to these through the engine bundle in
``livequiz.engine`` and stay free of game mechanics themselves.
"""
