"""StoryLoom: branching narrative trees grown from a single premise."""

__version__ = "0.3.0"
