"""crosspost - draft microblog posts in chat and publish them everywhere at once."""

__version__ = "0.3.0"
