"""RC Track Tracker: tracks, testing sessions and lap-time runs for RC-car hobbyists."""

__version__ = "0.1.0"
