from typing import Any

# -------- Aliases (clarify intent) --------
UnixMillis = int
Symbol = str
Interval = str  # e.g., "1m","5m","1h"
Payload = dict[str, Any]
