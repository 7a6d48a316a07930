from sqlalchemy.orm import Session

from .errors import ErrorCode, LedgerError
from .gateway import DataGateway
from .models import Stock
from .schemas import StockOut


def stock_to_out(stock: Stock) -> StockOut:
    return StockOut(
        stock_id=int(stock.stock_id),
        stock_symbol=str(stock.stock_symbol),
        name=stock.name,
        current_price=float(stock.current_price) if stock.current_price is not None else None,
    )


def normalize_symbol(raw_symbol: str | None) -> str:
    symbol = (raw_symbol or "").strip().upper()
    if not symbol:
        raise LedgerError(ErrorCode.VALIDATION, "symbol is required")
    return symbol


def get_stock(db: Session, stock_id: int) -> Stock:
    result = DataGateway(db).select("Stocks", eq={"stock_id": stock_id}, mode="maybe_single")
    if result.error:
        raise LedgerError(ErrorCode.LOOKUP_FAILED, "Error fetching stock: " + result.error.message)
    if result.data is None:
        raise LedgerError(ErrorCode.LOOKUP_FAILED, "Stock not found")
    return result.data


def get_stock_by_symbol(db: Session, raw_symbol: str) -> Stock:
    symbol = normalize_symbol(raw_symbol)
    result = DataGateway(db).select("Stocks", eq={"stock_symbol": symbol}, mode="maybe_single")
    if result.error:
        raise LedgerError(ErrorCode.LOOKUP_FAILED, "Error fetching stock: " + result.error.message)
    if result.data is None:
        # No error and no row: either the symbol is unknown or the caller can't see it.
        raise LedgerError(
            ErrorCode.LOOKUP_FAILED,
            f"No row returned for symbol '{symbol}'. The stock is unknown or not visible to this caller.",
        )
    return result.data


def list_stocks(db: Session) -> list[Stock]:
    result = DataGateway(db).select("Stocks", order_by=("stock_symbol",))
    if result.error:
        raise LedgerError(ErrorCode.LOOKUP_FAILED, "Error fetching stocks: " + result.error.message)
    return result.data
