"""PR review bot: GitHub pull request webhook to LLM review pipeline."""

__version__ = "0.1.0"
