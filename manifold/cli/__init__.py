"""CLI module for manifold."""
