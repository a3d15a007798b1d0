"""Channels Bridge - relay permission requests and notifications to a chat channel."""

__version__ = "0.1.0"
