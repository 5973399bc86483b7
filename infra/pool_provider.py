"""
HTTP pool-data provider.

Fetches raw pool state from a snapshot service:

    GET {base_url}/pools/{address}

    {
      "address": "...",
      "token_x": {"address": "...", "symbol": "SOL", "decimals": 9},
      "token_y": {"address": "...", "symbol": "USDC", "decimals": 6},
      "bin_step": 25,
      "active_bin_id": 8112,
      "fee_parameters": {"base_factor": "0.25", "max_volatility_factor": "100",
                         "volatility_accumulator": "0", "protocol_share": "0.3"},
      "bins": [{"bin_id": 8112, "price": "101.5", "amount_x": "10", "amount_y": "1000"}],
      "cumulative_volume": "123456.7",
      "cumulative_fees": "308.6",
      "observed_at": "2024-05-01T12:00:00Z"
    }

Numbers may be JSON numbers or strings; they are converted to Decimal.
"""

import logging
import random
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import requests

from core.decimal_math import to_decimal
from core.exceptions import PoolDataProviderError
from core.pool_cache import PoolDataProvider
from core.pool_models import Bin, FeeParameters, Pool, ProviderSnapshot, TokenInfo

logger = logging.getLogger(__name__)


def _parse_timestamp(value: Any) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _parse_token(data: Dict[str, Any]) -> TokenInfo:
    return TokenInfo(
        address=str(data["address"]),
        symbol=str(data.get("symbol", "")),
        decimals=int(data.get("decimals", 0)),
    )


def parse_snapshot(payload: Dict[str, Any]) -> ProviderSnapshot:
    """
    Decode a provider payload.

    Raises:
        PoolDataProviderError: On missing fields, bad numbers or a bin window
            that does not contain the active bin
    """
    try:
        fee_data = payload.get("fee_parameters", {})
        pool = Pool(
            address=str(payload["address"]),
            token_x=_parse_token(payload["token_x"]),
            token_y=_parse_token(payload["token_y"]),
            bin_step=int(payload["bin_step"]),
            active_bin_id=int(payload["active_bin_id"]),
            fee_parameters=FeeParameters(
                base_factor=to_decimal(fee_data.get("base_factor", 0)),
                max_volatility_factor=to_decimal(fee_data.get("max_volatility_factor", 0)),
                volatility_accumulator=to_decimal(fee_data.get("volatility_accumulator", 0)),
                protocol_share=to_decimal(fee_data.get("protocol_share", "0.3")),
            ),
        )
        bins = tuple(
            sorted(
                (
                    Bin(
                        bin_id=int(b["bin_id"]),
                        price=to_decimal(b["price"]),
                        amount_x=to_decimal(b.get("amount_x", 0)),
                        amount_y=to_decimal(b.get("amount_y", 0)),
                    )
                    for b in payload.get("bins", [])
                ),
                key=lambda b: b.bin_id,
            )
        )
        cumulative_volume = to_decimal(payload.get("cumulative_volume", 0))
        cumulative_fees = to_decimal(payload.get("cumulative_fees", 0))
        observed_at = _parse_timestamp(payload.get("observed_at"))
    except (KeyError, TypeError, ValueError) as e:
        raise PoolDataProviderError(f"Malformed pool payload: {e}", e)

    active_bin = next((b for b in bins if b.bin_id == pool.active_bin_id), None)
    if active_bin is None:
        raise PoolDataProviderError(f"Active bin {pool.active_bin_id} missing from bin window of {pool.address}")

    return ProviderSnapshot(
        pool=pool,
        active_bin=active_bin,
        bins=bins,
        cumulative_volume=cumulative_volume,
        cumulative_fees=cumulative_fees,
        observed_at=observed_at,
    )


class HttpPoolDataProvider(PoolDataProvider):
    """
    Pool-data provider backed by the snapshot HTTP service.

    Retries on:
    - 429 (rate limit)
    - 5xx (server errors)
    - Network errors (timeout, connection)

    Does NOT retry on other 4xx responses.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        max_retries: int = 3,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max(1, int(max_retries))
        self.session = session or requests.Session()
        self._sleep = sleep

    def fetch_pool_snapshot(self, pool_address: str) -> ProviderSnapshot:
        return parse_snapshot(self._get(f"/pools/{pool_address}"))

    def _get(self, endpoint: str) -> Dict[str, Any]:
        url = self.base_url + endpoint
        last_exception: Optional[Exception] = None

        for attempt in range(self.max_retries):
            try:
                response = self.session.get(url, timeout=self.timeout)
                response.raise_for_status()
                return response.json()

            except requests.exceptions.HTTPError as e:
                status_code = e.response.status_code if e.response is not None else 0

                if 400 <= status_code < 500 and status_code != 429:
                    logger.error(f"Pool provider client error {status_code} on {endpoint}")
                    raise PoolDataProviderError(f"{endpoint} returned {status_code}", e)

                if status_code == 429:
                    logger.warning(f"Rate limited (429) on {endpoint}, attempt {attempt + 1}/{self.max_retries}")
                else:
                    logger.warning(
                        f"Server error ({status_code}) on {endpoint}, attempt {attempt + 1}/{self.max_retries}"
                    )
                last_exception = e

            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
                logger.warning(f"Network error on {endpoint}: {e}, attempt {attempt + 1}/{self.max_retries}")
                last_exception = e

            except ValueError as e:
                raise PoolDataProviderError(f"Invalid JSON from {endpoint}", e)

            if attempt < self.max_retries - 1:
                backoff = (2 ** attempt) + random.uniform(0, 1)
                logger.info(f"Retrying in {backoff:.1f}s...")
                self._sleep(backoff)

        logger.error(f"All {self.max_retries} retries exhausted for {endpoint}")
        raise PoolDataProviderError(f"{endpoint} failed after {self.max_retries} attempts", last_exception)
