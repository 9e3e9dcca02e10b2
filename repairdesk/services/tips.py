"""Diagnostic tips from a Gemini-compatible generateContent endpoint.

Tips are advisory: every failure (missing key, transport error, bad status,
unexpected body) is logged and returned as an unavailable result.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
import httpx
from repairdesk.models.service_item import ServiceItem

logger = logging.getLogger(__name__)

UNAVAILABLE_MESSAGE = 'Tips unavailable'


@dataclass
class TipsResult:
    available: bool
    text: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'available': self.available, 'text': self.text, 'message': self.message}


def build_prompt(item: ServiceItem) -> str:
    return (
        'Suggest concise diagnostic steps and likely causes for the following repair job. '
        'Format the answer as a short list.\n'
        f'Device: {item.device_name or "n/a"}\n'
        f'Model: {item.device_model or "n/a"}\n'
        f'Reported fault: {item.reported_fault or "n/a"}'
    )


class DiagnosticTipsClient:
    def __init__(self, base_url: str, api_key: Optional[str], model: str, timeout: float = 15.0,
                 transport: Optional[httpx.BaseTransport] = None):
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_config(cls, config, transport: Optional[httpx.BaseTransport] = None) -> 'DiagnosticTipsClient':
        return cls(
            config['TIPS_API_URL'],
            config.get('TIPS_API_KEY'),
            config['TIPS_MODEL'],
            timeout=config.get('TIPS_TIMEOUT_SECONDS', 15.0),
            transport=transport or config.get('TIPS_TRANSPORT'),
        )

    def tips_for(self, item: ServiceItem) -> TipsResult:
        if not self.api_key:
            logger.warning('diagnostic tips requested but TIPS_API_KEY is not set')
            return TipsResult(available=False, message=UNAVAILABLE_MESSAGE)
        body = {'contents': [{'role': 'user', 'parts': [{'text': build_prompt(item)}]}]}
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(
                    f'{self.base_url}/{self.model}:generateContent',
                    params={'key': self.api_key},
                    json=body,
                )
                response.raise_for_status()
                data = response.json()
            text = data['candidates'][0]['content']['parts'][0]['text']
        except httpx.HTTPError as exc:
            logger.warning('diagnostic tips request failed: %s', exc)
            return TipsResult(available=False, message=UNAVAILABLE_MESSAGE)
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            logger.warning('diagnostic tips response malformed: %s', exc)
            return TipsResult(available=False, message=UNAVAILABLE_MESSAGE)
        return TipsResult(available=True, text=text.strip())
