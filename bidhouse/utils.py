import datetime
from decimal import Decimal, InvalidOperation


## helpers for the two value types that must never be approximated:
## UTC instants and monetary amounts


def utcnow() -> datetime.datetime:
   """
   Returns the current time as an aware UTC datetime
   """
   return datetime.datetime.now(datetime.timezone.utc)


def to_iso(ts: datetime.datetime) -> str:
   """
   Fixed-width ISO-8601 UTC string so stored timestamps sort lexicographically
   """
   if ts.tzinfo is None:
       ts = ts.replace(tzinfo=datetime.timezone.utc)
   return ts.astimezone(datetime.timezone.utc).isoformat(timespec="microseconds")


def from_iso(value):
   """
   Parse a stored/transported timestamp back into an aware UTC datetime
   Returns None for None or empty strings
   """
   if not value:
       return None
   ts = datetime.datetime.fromisoformat(value)
   if ts.tzinfo is None:
       ts = ts.replace(tzinfo=datetime.timezone.utc)
   return ts.astimezone(datetime.timezone.utc)


def to_money(value) -> Decimal:
   """
   Exact decimal conversion for prices and bid amounts
   Floats go through str() so 10.1 stays 10.1 instead of its binary expansion
   """
   if isinstance(value, float):
       value = str(value)
   try:
       amount = value if isinstance(value, Decimal) else Decimal(value)
   except (InvalidOperation, TypeError, ValueError):
       raise ValueError(f"Not a monetary amount: {value!r}")
   if not amount.is_finite():
       raise ValueError(f"Not a monetary amount: {value!r}")
   return amount
