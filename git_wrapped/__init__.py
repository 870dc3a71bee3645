"""git-wrapped: a year-in-review of your git commit history."""

__version__ = "0.1.0"
__license__ = "MIT"

from git_wrapped.git_wrapped import main

__all__ = ["main"]
