"""
News Relay - periodic RSS/Atom relay to chat sinks.

This package fetches syndicated feeds, keeps only items newer than the
previous run, collapses near-duplicate stories across sources and posts the
result to Slack.
"""

__version__ = "0.1.0"
