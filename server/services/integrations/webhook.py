"""Webhook integration handler - outbound HTTP calls."""

import json
from typing import Any, Dict, Optional

import httpx

from core.logging import get_logger
from services.execution.interpolation import MISSING, resolve_path

logger = get_logger(__name__)


def parse_headers(headers: Any) -> Dict[str, str]:
    """Headers may arrive as a mapping or as a JSON object string."""
    if not headers:
        return {}
    if isinstance(headers, dict):
        return {str(k): str(v) for k, v in headers.items()}
    try:
        parsed = json.loads(headers)
    except (TypeError, json.JSONDecodeError) as e:
        logger.error("Error parsing webhook headers", error=str(e))
        return {}
    return parsed if isinstance(parsed, dict) else {}


async def handle_webhook(config: Dict[str, Any], data: Dict[str, Any],
                         timeout: float = 30.0,
                         client: Optional[httpx.AsyncClient] = None) -> Dict[str, Any]:
    """Make an HTTP request described by a webhook node's config.

    Network errors are reported in the result instead of being raised.

    Args:
        config: Interpolated node config (url, method, headers, body, responseMapping)
        data: Current data context
        timeout: Request timeout in seconds
        client: Optional shared client; a short-lived one is created otherwise

    Returns:
        {success, status, statusText, response, headers} plus mappedResponse
        when responseMapping resolves
    """
    url = config.get('url')
    method = (config.get('method') or 'GET').upper()
    headers = parse_headers(config.get('headers'))
    body = config.get('body')

    if not url:
        return {"success": False, "message": "URL is required"}

    request_kwargs: Dict[str, Any] = {"method": method, "url": url, "headers": headers}
    if body is not None and method != 'GET':
        if isinstance(body, (dict, list)):
            request_kwargs["json"] = body
        else:
            request_kwargs["content"] = str(body)
            headers.setdefault("Content-Type", "application/json")

    logger.info("Making webhook request", method=method, url=url)

    try:
        if client is not None:
            response = await client.request(**request_kwargs)
        else:
            async with httpx.AsyncClient(timeout=timeout) as owned_client:
                response = await owned_client.request(**request_kwargs)
    except httpx.HTTPError as e:
        logger.error("Webhook request failed", url=url, error=str(e))
        return {"success": False, "message": str(e) or type(e).__name__, "status": "error"}

    content_type = response.headers.get('content-type', '')
    if 'application/json' in content_type:
        try:
            response_data = response.json()
        except ValueError:
            response_data = response.text
    else:
        response_data = response.text

    result = {
        "success": response.is_success,
        "status": response.status_code,
        "statusText": response.reason_phrase,
        "response": response_data,
        "headers": dict(response.headers),
    }

    mapping = config.get('responseMapping')
    if mapping and isinstance(response_data, (dict, list)):
        mapped = resolve_path({"_": response_data}, f"_.{mapping}")
        if mapped is not MISSING:
            result["mappedResponse"] = mapped
        else:
            logger.warning("Response mapping did not resolve", mapping=mapping)

    return result
