"""Cardshelf - trading card catalog core."""
