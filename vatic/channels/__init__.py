"""Channel adapters for receiving triggers and sending replies."""

from vatic.channels.base import BaseChannel
from vatic.channels.manager import ChannelManager, create_channel

__all__ = ["BaseChannel", "ChannelManager", "create_channel"]
