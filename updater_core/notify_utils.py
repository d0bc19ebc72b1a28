import json
from typing import Optional

import requests


def notify_event(url: Optional[str], event_type: str, payload: dict, logger) -> bool:
    """POST the event as JSON to the webhook; failures only warn."""
    if not url:
        return False
    try:
        headers = {'Content-Type': 'application/json'}
        data = json.dumps({'event': event_type, **payload})
        response = requests.post(url, headers=headers, data=data, timeout=5)
        response.raise_for_status()
        return True
    except requests.RequestException as e:
        logger.warning(f"Webhook notify failed: {e}")
        return False
