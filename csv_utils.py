import csv
import re
from datetime import date, datetime
from io import StringIO
from typing import TYPE_CHECKING, Optional, Sequence

from money import parse_amount
from schemas import CSVRow
from snapshot import TransactionType

if TYPE_CHECKING:
    from models import Transaction


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


def parse_date(value: str) -> date:
    value = value.strip()
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        return datetime.strptime(value, "%d.%m.%Y").date()


def _parse_type(raw: str) -> Optional[TransactionType]:
    clean = raw.strip().lower()
    if not clean:
        return None
    return TransactionType(clean)


def parse_csv(content: str) -> tuple[list[CSVRow], list[str]]:
    reader = csv.DictReader(StringIO(content))
    rows: list[CSVRow] = []
    errors: list[str] = []
    for idx, raw in enumerate(reader, start=1):
        try:
            date_value = parse_date((raw.get("Date") or "").strip())
            type_value = _parse_type(raw.get("Type") or "")
            amount_value = parse_amount(raw.get("Amount") or "0", allow_negative=True)
            description = (raw.get("Description") or "").strip()
            category_raw = (raw.get("Category") or "").strip()
            rows.append(
                CSVRow(
                    date=date_value,
                    type=type_value,
                    amount_cents=amount_value,
                    description=description,
                    category=category_raw or None,
                )
            )
        except ValueError as exc:
            errors.append(f"Row {idx}: {exc}")
    return rows, errors


def export_transactions(transactions: Sequence["Transaction"]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(["Date", "Type", "Amount", "Description", "Category", "Hidden"])
    for txn in transactions:
        writer.writerow(
            [
                txn.date.isoformat(),
                txn.type.value if txn.type else "",
                f"{txn.amount_cents / 100:.2f}",
                sanitize_csv_value(txn.description or ""),
                sanitize_csv_value(txn.sub_category.name if txn.sub_category else ""),
                "1" if txn.is_hidden else "0",
            ]
        )
    return output.getvalue()
