from typing import Any, Dict, Optional

import httpx

from constants import EXECUTION_URL, EXECUTION_TIMEOUT
from logging_config import get_logger

logger = get_logger(__name__)


def error_result(message: str) -> Dict[str, Any]:
    """Execution result carrying an error in place of program output."""
    return {"run": {"output": f"Error: {message}"}}


class ExecutionRelay:
    """Forwards code to the external execution service (Piston API)."""

    def __init__(self, url: str = EXECUTION_URL, timeout: float = EXECUTION_TIMEOUT, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.timeout = timeout
        self._client = client if client is not None else httpx.AsyncClient(timeout=timeout)

    async def execute(self, code: str, language: str, version: str, stdin: Optional[str] = None) -> Dict[str, Any]:
        """Run code and return the service's response.

        Never raises: transport errors, timeouts, non-2xx statuses and bodies
        that are not a JSON object all come back as an error_result, so the
        caller always has exactly one result to broadcast.
        """
        payload = {
            "language": language,
            "version": version,
            "files": [{"content": code}],
            "stdin": stdin or "",
        }
        logger.debug(f"Executing {len(code)} characters of {language} {version}")
        try:
            response = await self._client.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            result = response.json()
            if not isinstance(result, dict):
                raise ValueError(f"unexpected response from execution service: {type(result).__name__}")
        except httpx.TimeoutException:
            logger.warning(f"Execution request timed out after {self.timeout}s")
            return error_result(f"execution timed out after {self.timeout:g} seconds")
        except Exception as e:
            logger.warning(f"Execution request failed: {e}")
            return error_result(str(e) or type(e).__name__)
        logger.debug(f"Execution finished for {language} {version}")
        return result

    async def close(self):
        await self._client.aclose()
