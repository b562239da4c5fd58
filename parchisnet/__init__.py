"""Message protocol, master and ninja matchmaking servers, and game-selection model for Parchís."""

__version__ = "0.1.0"