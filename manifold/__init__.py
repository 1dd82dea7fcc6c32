"""manifold - run several CLI coding agents side by side, one git worktree each."""

__version__ = "0.1.0"
__logo__ = "manifold"
