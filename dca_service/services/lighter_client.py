"""Lighter DEX order gateway.

Wraps the lighter-sdk async API for quote-amount market orders, balance
lookups and order reconciliation.
"""

import logging
from decimal import Decimal, ROUND_DOWN

from dca_service.errors import ConfigurationError, ExchangeRejected
from dca_service.services.ports import OrderFill

logger = logging.getLogger(__name__)

DRY_RUN_BALANCE = Decimal("99999")


class LighterGateway:
    """OrderGateway implementation on top of the Lighter SDK."""

    def __init__(
        self,
        host: str,
        private_key: str,
        api_key_index: int,
        account_index: int,
        slippage_pct: float = 1.0,
        dry_run: bool = False,
    ):
        self.host = host
        self.private_key = private_key
        self.api_key_index = api_key_index
        self.account_index = account_index
        self.slippage = Decimal(str(slippage_pct)) / 100
        self.dry_run = dry_run
        self._api_client = None
        self._signer_client = None
        self._markets: dict[str, int] = {}  # symbol → market_index
        self._market_meta: dict[int, dict] = {}  # market_index → {price_decimals, size_decimals}

    async def _ensure_clients(self):
        """Lazily initialize Lighter SDK clients."""
        if self._api_client is not None:
            return

        try:
            import lighter
        except ImportError as e:
            raise ConfigurationError("lighter-sdk is not installed") from e

        try:
            config = lighter.Configuration(host=self.host)
            self._api_client = lighter.ApiClient(configuration=config)
            if not self.dry_run:
                self._signer_client = lighter.SignerClient(
                    url=self.host,
                    account_index=self.account_index,
                    api_private_keys={self.api_key_index: self.private_key},
                )
            logger.info("Lighter SDK clients initialized")
        except Exception as e:
            logger.error(f"Failed to initialize Lighter clients: {e}")
            raise ConfigurationError(f"Lighter client initialization failed: {e}") from e

    async def check_ready(self) -> None:
        """Verify credentials before a tick places any order."""
        if not self.dry_run and not self.private_key:
            raise ConfigurationError("No Lighter private key configured")
        await self._ensure_clients()
        if self.dry_run:
            return
        try:
            error = self._signer_client.check_client()
        except Exception as e:
            raise ConfigurationError(f"Lighter credential check failed: {e}") from e
        if error is not None:
            raise ConfigurationError(f"Lighter credential check failed: {error}")

    async def _resolve_market(self, symbol: str) -> int:
        """Map a symbol such as "SOL" or "SOLUSDT" to its Lighter market index."""
        if symbol in self._markets:
            return self._markets[symbol]

        import lighter

        order_api = lighter.OrderApi(self._api_client)
        resp = await order_api.order_books()
        for book in getattr(resp, "order_books", None) or []:
            self._markets[str(getattr(book, "symbol", "")).upper()] = int(book.market_id)

        for candidate in (symbol.upper(), symbol.upper().removesuffix("USDT"), symbol.upper().removesuffix("USDC")):
            if candidate in self._markets:
                self._markets[symbol] = self._markets[candidate]
                return self._markets[symbol]
        raise ExchangeRejected(None, f"Unknown Lighter market for symbol {symbol}")

    async def _get_market_details(self, market_index: int):
        """Fetch order book details; caches price/size decimal info per market."""
        import lighter

        order_api = lighter.OrderApi(self._api_client)
        resp = await order_api.order_book_details(market_id=market_index)
        # resp.order_book_details = perps markets, resp.spot_order_book_details = spot
        for book in (resp.order_book_details or []) + (resp.spot_order_book_details or []):
            if book.market_id == market_index:
                self._market_meta[market_index] = {
                    "price_decimals": int(book.supported_price_decimals),
                    "size_decimals": int(book.supported_size_decimals),
                }
                return book
        raise ExchangeRejected(None, f"Could not find market metadata for market_index={market_index}")

    async def get_available_balance(self, asset: str) -> Decimal:
        """Available collateral balance; Lighter accounts hold a single quote collateral."""
        await self._ensure_clients()
        if self.dry_run:
            return DRY_RUN_BALANCE
        try:
            import lighter

            account_api = lighter.AccountApi(self._api_client)
            resp = await account_api.account(by="index", value=str(self.account_index))
        except Exception as e:
            logger.error(f"Balance fetch failed: {e}", exc_info=True)
            raise ExchangeRejected(None, f"Balance fetch failed: {e}") from e

        if hasattr(resp, "accounts") and resp.accounts:
            balance = resp.accounts[0].available_balance
        elif hasattr(resp, "available_balance"):
            balance = resp.available_balance
        else:
            raise ExchangeRejected(None, f"Unexpected balance response: {resp}")
        logger.debug(f"Balance fetched: {balance} {asset}")
        return Decimal(str(balance))

    async def submit_order(self, symbol: str, side: str, amount: Decimal, client_order_id: int) -> OrderFill:
        """Place a market order spending (BUY) or receiving (SELL) `amount` of quote currency."""
        await self._ensure_clients()
        is_ask = side.upper() == "SELL"

        try:
            market_index = await self._resolve_market(symbol)
            book = await self._get_market_details(market_index)
        except ExchangeRejected:
            raise
        except Exception as e:
            raise ExchangeRejected(None, f"Market lookup failed for {symbol}: {e}") from e

        reference_price = Decimal(str(getattr(book, "last_trade_price", 0) or 0))
        if reference_price <= 0:
            raise ExchangeRejected(None, f"No reference price for {symbol}")

        meta = self._market_meta[market_index]
        base_amount = Decimal(amount) / reference_price
        worst_price = reference_price * (1 - self.slippage if is_ask else 1 + self.slippage)
        amount_int = int((base_amount * 10 ** meta["size_decimals"]).to_integral_value(rounding=ROUND_DOWN))
        price_int = int((worst_price * 10 ** meta["price_decimals"]).to_integral_value())
        if amount_int <= 0:
            raise ExchangeRejected(None, f"Order size for {amount} rounds to zero")

        if self.dry_run:
            logger.info(
                f"DRY-RUN {side} order: {symbol} market={market_index}, amount={base_amount:.6f}, "
                f"price={reference_price}, client_order_id={client_order_id}"
            )
            return OrderFill(
                order_id=f"dry-{client_order_id}",
                actual_quantity=Decimal(amount_int) / 10 ** meta["size_decimals"],
                actual_fill_price=reference_price,
            )

        # Transport failures propagate as-is: the order may have reached the
        # exchange, so only an explicit error response counts as a rejection
        order, resp, error = await self._signer_client.create_market_order(
            market_index=market_index,
            client_order_index=client_order_id,
            base_amount=amount_int,
            avg_execution_price=price_int,
            is_ask=is_ask,
        )

        if error is not None:
            logger.error(f"Order rejected: {error}")
            raise ExchangeRejected(getattr(resp, "code", None), str(error))

        filled_price = getattr(order, "avg_execution_price", None) or getattr(order, "price", None)
        filled_amount = getattr(order, "filled_amount", None) or getattr(order, "base_amount", None)
        logger.info(f"Order placed: {client_order_id} ({side} {symbol})")
        return OrderFill(
            order_id=str(client_order_id),
            actual_quantity=_scaled(filled_amount, meta["size_decimals"]) or Decimal(amount_int) / 10 ** meta["size_decimals"],
            actual_fill_price=_scaled(filled_price, meta["price_decimals"]) or reference_price,
        )

    async def find_order(self, symbol: str, client_order_id: int) -> OrderFill | None:
        """Look up a filled order by client order index among the account's inactive orders."""
        await self._ensure_clients()
        if self.dry_run:
            return None

        import lighter

        try:
            market_index = await self._resolve_market(symbol)
            auth, err = self._signer_client.create_auth_token_with_expiry()
            if err is not None:
                raise ExchangeRejected(None, f"Auth token error: {err}")
            order_api = lighter.OrderApi(self._api_client)
            resp = await order_api.account_inactive_orders(
                account_index=self.account_index,
                market_id=market_index,
                limit=100,
                auth=auth,
            )
        except ExchangeRejected:
            raise
        except Exception as e:
            raise ExchangeRejected(None, f"Order lookup failed: {e}") from e

        for order in getattr(resp, "orders", None) or []:
            if int(getattr(order, "client_order_index", -1)) != client_order_id:
                continue
            filled_base = Decimal(str(getattr(order, "filled_base_amount", 0) or 0))
            filled_quote = Decimal(str(getattr(order, "filled_quote_amount", 0) or 0))
            if filled_base <= 0:
                return None
            return OrderFill(
                order_id=str(client_order_id),
                actual_quantity=filled_base,
                actual_fill_price=filled_quote / filled_base,
            )
        return None

    async def close(self):
        """Close SDK clients."""
        if self._signer_client is not None:
            try:
                await self._signer_client.close()
            except Exception as e:
                logger.debug(f"Signer client close failed: {e}")
        if self._api_client is not None:
            try:
                await self._api_client.close()
            except Exception as e:
                logger.debug(f"API client close failed: {e}")
        self._api_client = None
        self._signer_client = None
        self._markets = {}
        self._market_meta = {}


def _scaled(value, decimals: int) -> Decimal | None:
    """Exchange values come back either as integer ticks or decimal strings."""
    if value is None:
        return None
    if isinstance(value, int):
        return Decimal(value) / 10 ** decimals
    result = Decimal(str(value))
    return result if result > 0 else None
