#!/usr/bin/env python3
"""
Community hash registry client

GET  {base}/hash/{fingerprint} -> match or 404
POST {base}/hash               -> {fingerprint, metadata, confidence, userAgent}

Every failure is logged and reported as "no match" / "not submitted".
"""

import hashlib
import logging
import uuid
from typing import Optional, Dict

import requests

from mediacat import __version__
from mediacat.models import HashMatch, MetadataUpdate

logger = logging.getLogger(__name__)


def machine_user_agent() -> str:
    """Stable, anonymous client id derived from the host's hardware address"""
    digest = hashlib.sha256(str(uuid.getnode()).encode('utf-8')).hexdigest()
    return f"mediacat-{__version__}-{digest[:12]}"


class CommunityRegistry:
    """HTTP client for the shared fingerprint registry"""

    def __init__(self, base_url: str, timeout: int = 10, user_agent: Optional[str] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.user_agent = user_agent or machine_user_agent()
        self.stats = {'lookups': 0, 'hits': 0, 'submitted': 0, 'failed': 0}

    def lookup(self, fingerprint: str) -> Optional[HashMatch]:
        self.stats['lookups'] += 1
        try:
            response = requests.get(
                f"{self.base_url}/hash/{fingerprint}",
                headers={'User-Agent': self.user_agent},
                timeout=self.timeout
            )
            if response.status_code == 404:
                return None
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.Timeout:
            logger.warning(f"Hash registry timeout for {fingerprint}")
            return None
        except requests.exceptions.HTTPError as e:
            logger.warning(f"Hash registry HTTP error for {fingerprint}: {e}")
            return None
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.debug(f"Hash registry error for {fingerprint}: {e}")
            return None

        metadata = data.get('metadata') if isinstance(data, dict) else None
        if not metadata:
            return None

        self.stats['hits'] += 1
        try:
            confidence = float(data.get('confidence', 0))
        except (TypeError, ValueError):
            confidence = 0.0
        return HashMatch(
            fingerprint=fingerprint,
            source='community',
            metadata=MetadataUpdate.from_dict(dict(metadata, source='community')),
            confidence=confidence,
        )

    def submit(self, fingerprint: str, metadata: MetadataUpdate, confidence: float) -> bool:
        payload: Dict = {
            'fingerprint': fingerprint,
            'metadata': metadata.to_dict(),
            'confidence': confidence,
            'userAgent': self.user_agent,
        }
        try:
            response = requests.post(
                f"{self.base_url}/hash",
                json=payload,
                headers={'User-Agent': self.user_agent},
                timeout=self.timeout
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            self.stats['failed'] += 1
            logger.warning(f"Hash submission failed for {fingerprint}: {e}")
            return False

        self.stats['submitted'] += 1
        logger.debug(f"Submitted {fingerprint} ({metadata.title}, {confidence:.2f})")
        return True
