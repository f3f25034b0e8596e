"""AstroSwap - calendar-scored GALA -> GUSDC swap bot."""

__version__ = "1.0.0"
