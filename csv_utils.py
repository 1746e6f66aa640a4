import csv
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from io import StringIO
from typing import Sequence

from errors import ValidationError
from models import Expense


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
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def parse_amount(value: object) -> int:
    """Convert a decimal currency amount (number or string) to integer cents."""
    if isinstance(value, Decimal):
        amount = value
    else:
        clean = str(value).strip().replace("€", "").replace("$", "").replace(" ", "")
        clean = clean.replace(",", ".")
        try:
            amount = Decimal(clean)
        except InvalidOperation as exc:
            raise ValidationError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValidationError("Invalid amount")
    cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents < 0:
        raise ValidationError("Amount must not be negative")
    return cents


def cents_to_amount(cents: int) -> float:
    return float(Decimal(int(cents)) / Decimal(100))


def export_expenses(expenses: Sequence[Expense]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(["Date", "Title", "Category", "Amount", "Description"])
    for expense in expenses:
        writer.writerow(
            [
                expense.date.date().isoformat(),
                sanitize_csv_value(expense.title),
                sanitize_csv_value(expense.category.name if expense.category else ""),
                f"{Decimal(expense.amount_cents) / Decimal(100):.2f}",
                sanitize_csv_value(expense.description or ""),
            ]
        )
    return output.getvalue()
