import csv
import re
from decimal import Decimal, InvalidOperation
from io import StringIO
from typing import Sequence

from schemas import Transaction


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^sh\s*",
        r"^\.",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def parse_amount(value: str, *, allow_zero: bool = False) -> float:
    clean = value.strip()
    for symbol in ("₹", "Rs.", "Rs", "INR", "$", " ", " "):
        clean = clean.replace(symbol, "")
    if "," in clean and "." in clean:
        # 1,20,000.50 or 1,200.50: commas group digits
        clean = clean.replace(",", "")
    elif clean.count(",") == 1 and len(clean.split(",")[1]) <= 2:
        clean = clean.replace(",", ".")
    else:
        clean = clean.replace(",", "")
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    amount = amount.quantize(Decimal("0.01"))
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValueError("Amount must be positive")
    return float(amount)


def export_transactions(transactions: Sequence[Transaction]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(
        ["Date", "Type", "Category", "PaymentMethod", "Amount", "Description"]
    )
    for txn in transactions:
        writer.writerow(
            [
                txn.date.isoformat(),
                txn.type.value,
                txn.category.value,
                txn.payment_method.value,
                f"{txn.amount:.2f}",
                sanitize_csv_value(txn.description),
            ]
        )
    return output.getvalue()
