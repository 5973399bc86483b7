"""
Tests for the HTTP pool-data provider

Payload decoding plus retry behaviour:
- 429 rate limit and 5xx server errors are retried with backoff
- network timeouts/connection errors are retried
- other 4xx responses and invalid JSON fail immediately
"""
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import Mock

import pytest
from requests.exceptions import ConnectionError, HTTPError, Timeout

from core.exceptions import PoolDataProviderError
from infra.pool_provider import HttpPoolDataProvider, parse_snapshot


def payload(**overrides):
    data = {
        "address": "Pool1",
        "token_x": {"address": "MintX", "symbol": "SOL", "decimals": 9},
        "token_y": {"address": "MintY", "symbol": "USDC", "decimals": 6},
        "bin_step": 25,
        "active_bin_id": 8112,
        "fee_parameters": {"base_factor": "0.25", "max_volatility_factor": 100,
                           "volatility_accumulator": "0"},
        "bins": [
            {"bin_id": 8113, "price": "101.75", "amount_x": "5", "amount_y": "0"},
            {"bin_id": 8112, "price": "101.5", "amount_x": "10", "amount_y": "1000"},
        ],
        "cumulative_volume": "123456.7",
        "cumulative_fees": 308.6,
        "observed_at": "2024-05-01T12:00:00Z",
    }
    data.update(overrides)
    return data


def ok_response(body):
    response = Mock()
    response.status_code = 200
    response.raise_for_status.return_value = None
    response.json.return_value = body
    return response


def http_error(status_code):
    response = Mock()
    response.status_code = status_code
    return HTTPError(response=response)


@pytest.fixture
def session():
    return Mock()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def provider(session, sleeps):
    return HttpPoolDataProvider(
        "https://pools.example.com/v1/", max_retries=3, session=session, sleep=sleeps.append
    )


class TestParseSnapshot:
    def test_decodes_payload(self):
        snapshot = parse_snapshot(payload())

        assert snapshot.pool.address == "Pool1"
        assert snapshot.pool.token_x.symbol == "SOL"
        assert snapshot.pool.fee_parameters.max_volatility_factor == Decimal(100)
        assert snapshot.active_bin.price == Decimal("101.5")
        assert [b.bin_id for b in snapshot.bins] == [8112, 8113]
        assert snapshot.cumulative_volume == Decimal("123456.7")
        assert snapshot.cumulative_fees == Decimal("308.6")
        assert snapshot.observed_at == datetime(2024, 5, 1, 12, tzinfo=timezone.utc)

    def test_epoch_timestamp(self):
        snapshot = parse_snapshot(payload(observed_at=1714564800))
        assert snapshot.observed_at == datetime(2024, 5, 1, 12, tzinfo=timezone.utc)

    def test_missing_field(self):
        data = payload()
        del data["token_x"]
        with pytest.raises(PoolDataProviderError, match="Malformed"):
            parse_snapshot(data)

    def test_bad_number(self):
        with pytest.raises(PoolDataProviderError):
            parse_snapshot(payload(cumulative_volume="n/a"))

    def test_active_bin_outside_window(self):
        with pytest.raises(PoolDataProviderError, match="Active bin 9000"):
            parse_snapshot(payload(active_bin_id=9000))


class TestFetch:
    def test_fetches_pool_endpoint(self, provider, session):
        session.get.return_value = ok_response(payload())

        snapshot = provider.fetch_pool_snapshot("Pool1")

        assert snapshot.pool.address == "Pool1"
        session.get.assert_called_once_with("https://pools.example.com/v1/pools/Pool1", timeout=10.0)

    def test_retries_on_429_and_succeeds(self, provider, session, sleeps):
        session.get.side_effect = [http_error(429), http_error(429), ok_response(payload())]

        snapshot = provider.fetch_pool_snapshot("Pool1")

        assert snapshot.pool.bin_step == 25
        assert session.get.call_count == 3
        assert len(sleeps) == 2
        assert 1 <= sleeps[0] <= 2
        assert 2 <= sleeps[1] <= 3

    def test_retries_on_5xx(self, provider, session):
        session.get.side_effect = [http_error(503), ok_response(payload())]
        provider.fetch_pool_snapshot("Pool1")
        assert session.get.call_count == 2

    @pytest.mark.parametrize("error", [Timeout("slow"), ConnectionError("refused")])
    def test_retries_on_network_errors(self, provider, session, error):
        session.get.side_effect = [error, ok_response(payload())]
        provider.fetch_pool_snapshot("Pool1")
        assert session.get.call_count == 2

    def test_exhausts_retries(self, provider, session, sleeps):
        session.get.side_effect = http_error(500)

        with pytest.raises(PoolDataProviderError, match="after 3 attempts") as exc_info:
            provider.fetch_pool_snapshot("Pool1")

        assert session.get.call_count == 3
        assert len(sleeps) == 2
        assert isinstance(exc_info.value.original, HTTPError)

    @pytest.mark.parametrize("status", [400, 404])
    def test_no_retry_on_client_error(self, provider, session, sleeps, status):
        session.get.side_effect = http_error(status)

        with pytest.raises(PoolDataProviderError, match=str(status)):
            provider.fetch_pool_snapshot("Pool1")

        assert session.get.call_count == 1
        assert sleeps == []

    def test_invalid_json(self, provider, session):
        response = ok_response(None)
        response.json.side_effect = ValueError("Expecting value")
        session.get.return_value = response

        with pytest.raises(PoolDataProviderError, match="Invalid JSON"):
            provider.fetch_pool_snapshot("Pool1")
        assert session.get.call_count == 1
