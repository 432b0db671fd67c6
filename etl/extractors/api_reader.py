"""
API source reader with authentication, pagination and retry logic.

This module provides robust API extraction with:
- Bearer token, API key header or basic authentication
- Page-by-page accumulation of `data` arrays until `has_more` is false
  or `max_pages` is reached
- Exponential backoff retry for transient failures (timeouts, 429, 5xx)
- Incremental loading via the `since` query parameter
"""

import httpx
import asyncio
import base64
from typing import List, Dict, Any, Optional
from etl.extractors.base import ExtractionContext, SourceReader
from schemas.pipeline import SourceDescriptor
from models.base import SourceType
from core.config import settings
from core.exceptions import (
    APIExtractionError,
    NetworkError,
    RateLimitError,
    AuthenticationError,
    ResourceNotFoundError,
)
import logging

logger = logging.getLogger(__name__)


def auth_headers(descriptor: SourceDescriptor) -> Dict[str, str]:
    """Headers for the configured auth scheme; unknown schemes send none"""
    if descriptor.auth == "bearer_token":
        return {"Authorization": f"Bearer {descriptor.token}"}
    if descriptor.auth == "api_key":
        return {"X-API-Key": descriptor.api_key or ""}
    if descriptor.auth == "basic":
        credentials = f"{descriptor.username or ''}:{descriptor.password or ''}"
        encoded = base64.b64encode(credentials.encode()).decode()
        return {"Authorization": f"Basic {encoded}"}
    return {}


class APISourceReader(SourceReader):
    """
    Extract records from a paginated REST endpoint.
    
    Request parameters:
        page: 1-based page number
        limit: descriptor.batch_size
        since: ISO watermark, only when incremental_field is configured
               and a previous COMPLETED batch exists
    
    Attributes:
        transport: Optional httpx transport (tests use httpx.MockTransport)
    """
    
    source_type = SourceType.API.value
    
    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.transport = transport
    
    async def _request_with_retry(
        self,
        client: httpx.AsyncClient,
        source_name: str,
        url: str,
        params: Dict[str, Any],
        max_retries: int,
        retry_delay: float
    ) -> httpx.Response:
        """
        Make HTTP GET with retry logic and exponential backoff.
        
        Raises:
            AuthenticationError: 401/403, not retried
            ResourceNotFoundError: 404, not retried
            RateLimitError: 429 after max retries
            NetworkError: 5xx, timeouts or transport errors after max retries
        """
        for attempt in range(max_retries):
            delay = retry_delay * (2 ** attempt)
            is_last = attempt == max_retries - 1
            
            try:
                logger.debug(f"Request attempt {attempt + 1}/{max_retries} to {url}")
                response = await client.get(url, params=params)
            
            except httpx.TimeoutException as e:
                if is_last:
                    raise NetworkError(
                        f"Request timeout after {max_retries} retries",
                        context={"api_url": url, "source_name": source_name, "retry_count": attempt + 1},
                        original_exception=e
                    )
                logger.warning(f"Request timeout. Retrying in {delay} seconds")
                await asyncio.sleep(delay)
                continue
            
            except httpx.TransportError as e:
                if is_last:
                    raise NetworkError(
                        f"Network error after {max_retries} retries",
                        context={"api_url": url, "source_name": source_name, "retry_count": attempt + 1},
                        original_exception=e
                    )
                logger.warning(f"Network error. Retrying in {delay} seconds")
                await asyncio.sleep(delay)
                continue
            
            if response.status_code in (401, 403):
                raise AuthenticationError(
                    f"Authentication failed for {url}",
                    context={"status_code": response.status_code, "api_url": url, "source_name": source_name}
                )
            
            if response.status_code == 404:
                raise ResourceNotFoundError(
                    f"Resource not found: {url}",
                    context={"status_code": 404, "api_url": url, "source_name": source_name}
                )
            
            if response.status_code == 429:
                retry_after = int(response.headers.get("Retry-After", delay))
                if is_last:
                    raise RateLimitError(
                        f"Rate limit exceeded for {url}",
                        context={"status_code": 429, "api_url": url, "source_name": source_name, "retry_count": attempt + 1},
                        retry_after=retry_after
                    )
                logger.warning(f"Rate limited. Retrying after {retry_after} seconds")
                await asyncio.sleep(retry_after)
                continue
            
            if response.status_code >= 500:
                if is_last:
                    raise NetworkError(
                        f"Server error after {max_retries} retries",
                        context={
                            "status_code": response.status_code,
                            "api_url": url,
                            "source_name": source_name,
                            "retry_count": attempt + 1,
                            "response_body": response.text[:500]
                        }
                    )
                logger.warning(
                    f"Server error {response.status_code}. "
                    f"Retrying in {delay} seconds (attempt {attempt + 1}/{max_retries})"
                )
                await asyncio.sleep(delay)
                continue
            
            try:
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise APIExtractionError(
                    f"Unexpected status {response.status_code} from {url}",
                    context={"status_code": response.status_code, "api_url": url, "source_name": source_name},
                    original_exception=e
                )
            return response
        
        raise APIExtractionError(
            "Max retries exceeded",
            context={"api_url": url, "source_name": source_name}
        )
    
    async def read(
        self,
        source_name: str,
        descriptor: SourceDescriptor,
        context: ExtractionContext
    ) -> List[Dict[str, Any]]:
        """
        Fetch every page of the endpoint.
        
        Raises:
            APIExtractionError: Missing endpoint, unparseable body or any
                request failure surviving the retries
        """
        if not descriptor.endpoint:
            raise APIExtractionError(
                "API source has no endpoint configured",
                context={"source_name": source_name, "batch_id": context.batch_id}
            )
        
        timeout = descriptor.timeout or settings.HTTP_TIMEOUT
        max_retries = descriptor.max_retries or settings.HTTP_MAX_RETRIES
        retry_delay = settings.HTTP_RETRY_DELAY if descriptor.retry_delay is None else descriptor.retry_delay
        
        records: List[Dict[str, Any]] = []
        page = 1
        has_more = True
        
        async with httpx.AsyncClient(
            timeout=timeout,
            headers=auth_headers(descriptor),
            transport=self.transport
        ) as client:
            while has_more and page <= descriptor.max_pages:
                params: Dict[str, Any] = {"page": page, "limit": descriptor.batch_size}
                if descriptor.incremental_field and context.watermark:
                    params["since"] = context.watermark.isoformat()
                
                logger.info(f"Fetching page {page} from {descriptor.endpoint}")
                response = await self._request_with_retry(
                    client, source_name, descriptor.endpoint, params, max_retries, retry_delay
                )
                
                try:
                    body = response.json()
                except ValueError as e:
                    raise APIExtractionError(
                        "Failed to parse JSON response",
                        context={
                            "api_url": descriptor.endpoint,
                            "source_name": source_name,
                            "page": page,
                            "response_body": response.text[:500]
                        },
                        original_exception=e
                    )
                
                data = body.get("data") if isinstance(body, dict) else None
                if not isinstance(data, list):
                    break
                
                records.extend(data)
                has_more = bool(body.get("has_more", False))
                page += 1
        
        logger.info(
            f"Fetched {len(records)} records from {source_name} ({page - 1} pages)"
        )
        return records
