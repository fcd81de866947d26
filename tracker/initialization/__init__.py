"""Process initialization."""
