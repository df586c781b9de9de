from abc import ABC, abstractmethod
from typing import Sequence

from app.schemas.price import PriceRecord


class AbstractPriceClient(ABC):
	"""Interface for clients that resolve coin ids to USD prices."""

	@abstractmethod
	async def fetch_one(self, coin_id: str) -> PriceRecord:
		"""Resolve a single coin id.

		Args:
			coin_id: Provider coin id (e.g. "bitcoin").

		Returns:
			PriceRecord: Name, symbol and price for the coin.

		Raises:
			PriceNotFoundError: If the provider has no price for the id.
			UpstreamRateLimitError: If the provider throttled the call.
			UpstreamTimeoutError: If the provider did not answer in time.
			UpstreamError: For any other transport, status or parse failure.
		"""
		...

	@abstractmethod
	async def fetch_many(self, coin_ids: Sequence[str]) -> dict[str, PriceRecord]:
		"""Resolve several coin ids with one combined price call.

		Ids the provider has no price for are left out of the result.

		Raises:
			UpstreamRateLimitError, UpstreamTimeoutError, UpstreamError: If the
				combined price call itself fails.
		"""
		...

	async def aclose(self) -> None:
		"""Release network resources held by the client."""
