import csv
import logging
import re
import unicodedata
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from io import StringIO
from typing import Iterable, Mapping, Optional, Sequence

from rapidfuzz.distance import Levenshtein

from config import get_settings
from invoice_cycle import clamp_day, month_key
from models import Category, LedgerRecord, TransactionKind
from schemas import StatementDraft

logger = logging.getLogger(__name__)

DATE_COLUMNS = ("data", "date", "dia", "dt")
AMOUNT_COLUMNS = ("valor", "value", "amount")
DESCRIPTION_COLUMNS = ("descricao", "description", "loja")
CURRENT_INSTALLMENT_COLUMNS = ("parcela_atual",)
INSTALLMENT_COLUMNS = ("parcela", "parcelas", "installments")
TOTAL_INSTALLMENT_COLUMNS = ("total_parcelas", "numero_parcelas", "parcelas")
CATEGORY_COLUMNS = ("categoria", "category")

DEFAULT_DESCRIPTION = "Imported purchase"
MAX_DESCRIPTION_LENGTH = 200

MONTH_ABBREVIATIONS = {
    "jan": 1,
    "fev": 2,
    "feb": 2,
    "mar": 3,
    "abr": 4,
    "apr": 4,
    "mai": 5,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "ago": 8,
    "aug": 8,
    "set": 9,
    "sep": 9,
    "out": 10,
    "oct": 10,
    "nov": 11,
    "dez": 12,
    "dec": 12,
}

CATEGORY_ALIASES = {
    "salario": Category.salary,
    "investimentos": Category.investments,
    "outros rendimentos": Category.other_income,
    "aluguel": Category.rent,
    "energia": Category.energy,
    "luz": Category.energy,
    "agua": Category.water,
    "telefone": Category.phone,
    "celular": Category.phone,
    "condominio": Category.condo_fee,
    "assinaturas": Category.subscriptions,
    "alimentacao": Category.food,
    "mercado": Category.food,
    "restaurante": Category.food,
    "transporte": Category.transport,
    "saude": Category.health,
    "educacao": Category.education,
    "lazer": Category.leisure,
    "vestuario": Category.clothing,
    "outros": Category.other,
}
for _category in Category:
    CATEGORY_ALIASES.setdefault(_category.value.replace("_", " "), _category)

INSTALLMENT_TOKEN_RE = re.compile(r"(\d+)\s*(?:/|\sde\s)\s*(\d+)", re.IGNORECASE)
_LABELLED_TOKEN_RE = re.compile(
    r"[\s\-(\[]*(?:parcela|parc\.?)?\s*\d+\s*(?:/|\sde\s)\s*\d+\s*[)\]]?",
    re.IGNORECASE,
)
_DAY_MONTH_NAME_RE = re.compile(r"^(\d{1,2})/([^\W\d_]{3})\.?$")
_DAY_MONTH_YEAR_RE = re.compile(r"^(\d{1,2})/(\d{1,2})(?:/(\d{4}|\d{2}))?$")
_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")


@dataclass
class NormalizedStatement:
    drafts: list[StatementDraft]
    discarded: int
    merged_duplicates: int


def _fold(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_header(name: Optional[str]) -> str:
    clean = (name or "").replace("\ufeff", "").strip().strip("\"'").strip()
    clean = _fold(clean).lower()
    return re.sub(r"\s+", "_", clean)


def _clean_cell(value: Optional[str]) -> str:
    clean = (value or "").strip()
    # Spreadsheet exports wrap text cells as ="09/10".
    if clean.startswith("="):
        clean = clean[1:]
    return clean.strip().strip("\"'").strip()


def _first(row: Mapping[str, str], names: Sequence[str]) -> str:
    for name in names:
        value = _clean_cell(row.get(name))
        if value:
            return value
    return ""


def _infer_year(day: int, month: int, today: date, window_days: int) -> Optional[date]:
    try:
        candidate = date(today.year, month, day)
    except ValueError:
        return None
    if (candidate - today).days > window_days:
        try:
            candidate = date(today.year - 1, month, day)
        except ValueError:
            return None
    return candidate


def parse_statement_date(
    value: Optional[str],
    today: date,
    *,
    future_window_days: Optional[int] = None,
) -> Optional[date]:
    """Best-effort statement date parsing.

    Missing values fall back to ``today``; a value in a recognised shape that
    is not a real calendar date, or text in no known shape, returns ``None``.
    Year-less dates more than ``future_window_days`` ahead are assumed to
    belong to the previous year (a December purchase on a January statement).
    """
    if future_window_days is None:
        future_window_days = get_settings().import_future_window_days
    clean = _clean_cell(value)
    if not clean:
        return today

    match = _DAY_MONTH_NAME_RE.match(clean)
    if match:
        month = MONTH_ABBREVIATIONS.get(_fold(match.group(2)).lower())
        if month is None:
            return today
        return _infer_year(int(match.group(1)), month, today, future_window_days)

    match = _DAY_MONTH_YEAR_RE.match(clean)
    if match:
        day, month = int(match.group(1)), int(match.group(2))
        year_raw = match.group(3)
        if year_raw is None:
            return _infer_year(day, month, today, future_window_days)
        year = int(year_raw) + (2000 if len(year_raw) == 2 else 0)
        try:
            return date(year, month, day)
        except ValueError:
            return None

    match = _ISO_DATE_RE.match(clean)
    if match:
        try:
            return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        except ValueError:
            return None
    return None


def parse_statement_amount(value: Optional[str]) -> Decimal:
    clean = re.sub(r"[R$€£\s]", "", _clean_cell(value))
    if "," in clean and "." in clean:
        clean = clean.replace(".", "").replace(",", ".")
    elif "," in clean:
        clean = clean.replace(",", ".")
    try:
        amount = Decimal(clean)
    except InvalidOperation:
        return Decimal("0")
    if not amount.is_finite():
        return Decimal("0")
    return amount


def to_cents(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def strip_installment_token(description: str) -> str:
    cleaned = _LABELLED_TOKEN_RE.sub(" ", description or "")
    return re.sub(r"\s+", " ", cleaned).strip(" -")


def _as_int(value: str) -> Optional[int]:
    try:
        return int(value)
    except ValueError:
        return None


def detect_installment(
    row: Mapping[str, str],
    description: str,
    *,
    max_total: Optional[int] = None,
) -> Optional[tuple[int, int]]:
    """Return ``(current, total)`` when the row is part of a multi-installment purchase."""
    if max_total is None:
        max_total = get_settings().max_description_installments

    for column_value in (
        _first(row, CURRENT_INSTALLMENT_COLUMNS),
        _first(row, INSTALLMENT_COLUMNS),
    ):
        match = INSTALLMENT_TOKEN_RE.search(column_value) if column_value else None
        if match:
            current, total = int(match.group(1)), int(match.group(2))
            if total > 1 and 1 <= current <= total:
                return current, total
            return None

    for match in INSTALLMENT_TOKEN_RE.finditer(description or ""):
        current, total = int(match.group(1)), int(match.group(2))
        # Skip day/month pairs such as "05/03" that look like a token.
        if 1 <= current <= total and 1 < total <= max_total:
            return current, total

    current = _as_int(_first(row, CURRENT_INSTALLMENT_COLUMNS))
    total = _as_int(_first(row, TOTAL_INSTALLMENT_COLUMNS))
    if current is not None and total is not None and total > 1 and 1 <= current <= total:
        return current, total
    return None


def resolve_category(raw: str, kind: TransactionKind) -> Category:
    default = Category.other_income if kind == TransactionKind.income else Category.other
    needle = _fold(raw or "").strip().lower().replace("_", " ")
    if not needle:
        return default
    exact = CATEGORY_ALIASES.get(needle)
    if exact:
        return exact

    best_distance: Optional[int] = None
    best: set[Category] = set()
    for alias, category in CATEGORY_ALIASES.items():
        dist = int(Levenshtein.distance(needle, alias))
        if best_distance is None or dist < best_distance:
            best_distance = dist
            best = {category}
        elif dist == best_distance:
            best.add(category)
    if best_distance is not None and best_distance <= 1 and len(best) == 1:
        return next(iter(best))
    return default


def read_statement(content: str) -> list[dict[str, str]]:
    reader = csv.DictReader(StringIO(content.lstrip("\ufeff")))
    rows: list[dict[str, str]] = []
    for raw in reader:
        if not any((value or "").strip() for value in raw.values() if isinstance(value, str)):
            continue
        rows.append({key: value for key, value in raw.items() if key is not None})
    return rows


def normalize_statement(
    rows: Iterable[Mapping[str, str]],
    *,
    today: date,
    reference_period: Optional[str] = None,
) -> NormalizedStatement:
    drafts: list[StatementDraft] = []
    discarded = 0
    for idx, raw in enumerate(rows):
        row = {normalize_header(key): value for key, value in raw.items()}

        row_date = parse_statement_date(_first(row, DATE_COLUMNS), today)
        amount = parse_statement_amount(_first(row, AMOUNT_COLUMNS) or "0")
        if row_date is None or amount == 0:
            discarded += 1
            continue
        cents = to_cents(abs(amount))
        if cents == 0:
            discarded += 1
            continue

        kind = TransactionKind.income if amount < 0 else TransactionKind.variable_expense
        description = _first(row, DESCRIPTION_COLUMNS) or DEFAULT_DESCRIPTION
        installment = detect_installment(row, description)
        if installment:
            description = strip_installment_token(description) or description
        description = description[:MAX_DESCRIPTION_LENGTH].rstrip()

        drafts.append(
            StatementDraft(
                key=f"row-{idx}",
                date=row_date,
                description=description,
                amount_cents=cents,
                kind=kind,
                category=resolve_category(_first(row, CATEGORY_COLUMNS), kind),
                is_installment=installment is not None,
                installment_index=installment[0] if installment else None,
                installment_count=installment[1] if installment else None,
            )
        )

    # Rows of one parceled purchase collapse to the lowest installment, which
    # later seeds the whole series.
    seed_positions: dict[tuple, int] = {}
    kept: list[StatementDraft] = []
    merged = 0
    for draft in drafts:
        if not draft.is_installment:
            kept.append(draft)
            continue
        signature = (
            draft.date,
            draft.description.lower(),
            draft.amount_cents,
            draft.installment_count,
        )
        position = seed_positions.get(signature)
        if position is None:
            seed_positions[signature] = len(kept)
            kept.append(draft)
            continue
        merged += 1
        if draft.installment_index < kept[position].installment_index:
            kept[position] = draft

    if reference_period:
        for draft in kept:
            if draft.is_installment:
                draft.date = clamp_day(reference_period, draft.date.day)

    kept.sort(key=lambda d: d.date)
    logger.info(
        f"statement_normalized: rows={len(drafts) + discarded} drafts={len(kept)} "
        f"discarded={discarded} merged={merged}"
    )
    return NormalizedStatement(drafts=kept, discarded=discarded, merged_duplicates=merged)


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()
    if value.startswith(("=", "+", "-", "@", "\t", "\r")):
        return "\t" + value
    if re.match(r"^(cmd|powershell|bash|sh)\s*|^http[s]?://", value, re.IGNORECASE):
        return "\t" + value
    return value


def export_records(records: Sequence[LedgerRecord]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(
        [
            "Date",
            "Description",
            "Amount",
            "Kind",
            "Category",
            "PaymentMethod",
            "InvoicePeriod",
            "Installment",
            "Status",
        ]
    )
    for record in records:
        installment = (
            f"{record.installment_index}/{record.installment_count}"
            if record.is_installment
            else ""
        )
        writer.writerow(
            [
                record.date.isoformat(),
                sanitize_csv_value(record.description),
                f"{record.amount_cents / 100:.2f}",
                record.kind.value,
                record.category.value,
                record.payment_method.value,
                record.invoice_period or month_key(record.date),
                installment,
                record.status.value,
            ]
        )
    return output.getvalue()
