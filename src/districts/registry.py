"""District registry backed by the YAML district catalog"""

import os
from pathlib import Path
from typing import Dict, List, Optional
from loguru import logger
import yaml

from .models import District

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parents[2] / 'config' / 'districts.yaml'


class DistrictRegistry:
    """Read-only lookup of districts by id or location"""

    def __init__(self, catalog_path: Optional[str] = None):
        """
        Initialize district registry

        Args:
            catalog_path: Path to districts YAML. Falls back to DISTRICTS_PATH env var,
                then the bundled config/districts.yaml
        """
        self.catalog_path = catalog_path or os.getenv('DISTRICTS_PATH') or str(DEFAULT_CATALOG_PATH)
        self.districts: Dict[str, District] = {}
        self._load_catalog()
        logger.info(f"District registry initialized with {len(self.districts)} districts")

    def _load_catalog(self):
        """Load districts from YAML catalog"""
        if not os.path.exists(self.catalog_path):
            logger.warning(f"District catalog not found: {self.catalog_path}")
            return

        with open(self.catalog_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        for entry in data.get('districts', []):
            self.register(District(**entry))

    def register(self, district: District):
        """
        Register a district

        Args:
            district: District definition
        """
        self.districts[district.id] = district
        logger.debug(f"Registered district: {district.id}")

    def get_by_id(self, district_id: str) -> Optional[District]:
        """
        Get district by id

        Args:
            district_id: District identifier (e.g. CA-USANORTH)

        Returns:
            District or None
        """
        district = self.districts.get(district_id)
        if district is None:
            logger.warning(f"District {district_id} not registered")
        return district

    def find_by_location(self, state: str, country: str = 'US') -> List[District]:
        """Find districts serving a state (or province for Canada)"""
        state = state.upper()
        return [
            d for d in self.districts.values()
            if d.country == country and d.state.upper() == state
        ]

    def all(self) -> List[District]:
        return list(self.districts.values())
