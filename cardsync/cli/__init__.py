"""Cardsync command-line interface."""
