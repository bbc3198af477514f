"""District data model"""

from typing import List, Optional
from urllib.parse import urlparse
from pydantic import BaseModel, ConfigDict, Field, field_validator


class District(BaseModel):
    """Regional 811 notification center (read-only)"""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    state: str
    country: str = 'US'
    area: Optional[str] = None
    methods: List[str] = Field(default_factory=list)  # Ordered channel names, fallback order
    api_available: bool = False
    email_available: bool = False
    api_url: Optional[str] = None
    web_portal: Optional[str] = None
    phone: Optional[str] = None
    alt_phone: Optional[str] = None
    email: Optional[str] = None
    notes: Optional[str] = None

    @field_validator('methods')
    @classmethod
    def normalize_methods(cls, v: List[str]) -> List[str]:
        return [m.strip().lower() for m in v]

    def supports(self, method: str) -> bool:
        """Check whether a channel name is listed for this district"""
        return method.lower() in self.methods

    @property
    def portal_host(self) -> Optional[str]:
        if not self.web_portal:
            return None
        host = urlparse(self.web_portal).hostname or ''
        return host[4:] if host.startswith('www.') else host or None
