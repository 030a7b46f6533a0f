"""
MMH Scanner

Polls the MakeMeHost hosted-game listing, classifies games by title and
keeps registered Discord channels up to date with a status message and a
ping per hosted game.
"""

__version__ = "0.1.0"
