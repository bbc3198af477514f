"""Submission channel kinds"""

from enum import Enum
from typing import Optional


class Channel(str, Enum):
    """Closed set of ways a request can be filed with a district"""
    API = 'api'
    EMAIL = 'email'
    PHONE = 'phone'
    WEBFORM = 'web'

    @classmethod
    def parse(cls, name: str) -> Optional['Channel']:
        """
        Map a district/request method name to a channel

        Args:
            name: Method name ('api', 'email', 'phone', 'web' or 'webform')

        Returns:
            Channel or None when the name is not a known channel
        """
        normalized = (name or '').strip().lower()
        if normalized == 'webform':
            return cls.WEBFORM
        for channel in cls:
            if channel.value == normalized:
                return channel
        return None


# Preference order when choosing a channel from scratch
CHANNEL_PRIORITY = [Channel.API, Channel.WEBFORM, Channel.EMAIL, Channel.PHONE]
