"""
CSV import of transactions.

The sheet has five columns in a fixed order: date, description, category,
type and amount. The first line is a header and is skipped. Dates may be
DD/MM/YYYY or ISO; types accept the English or Portuguese names.
"""
from __future__ import annotations

import base64
import binascii
import csv
import io
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from homeledger.budget import EXPENSE, INCOME
from homeledger.dates import parse_date

logger = logging.getLogger(__name__)

TEMPLATE_HEADER = ["Data (DD/MM/YYYY)", "Descrição", "Categoria", "Tipo (INCOME/RECEITA ou EXPENSE/DESPESA)", "Valor"]
TEMPLATE_EXAMPLES = [
    ["01/12/2024", "Exemplo: Compra no supermercado", "Alimentação", "DESPESA", "150.00"],
    ["05/12/2024", "Exemplo: Salário", "Salário", "RECEITA", "5000.00"],
]
TEMPLATE_FILENAME = "template_transacoes.csv"

TYPE_NAMES = {"INCOME": INCOME, "RECEITA": INCOME, "EXPENSE": EXPENSE, "DESPESA": EXPENSE}


class ReportFileError(ValueError):
    pass


def template_csv() -> str:
    buf = io.StringIO()
    w = csv.writer(buf, lineterminator="\n")
    w.writerow(TEMPLATE_HEADER)
    w.writerows(TEMPLATE_EXAMPLES)
    return buf.getvalue()


def decode_file(file_data: Optional[str]) -> str:
    if not file_data:
        raise ReportFileError("No file data provided")
    # data URLs carry a "data:text/csv;base64," prefix
    if file_data.startswith("data:") and "," in file_data:
        file_data = file_data.split(",", 1)[1]
    try:
        raw = base64.b64decode(file_data, validate=True)
    except (binascii.Error, ValueError):
        raise ReportFileError("File data is not valid base64")
    for encoding in ("utf-8-sig", "latin-1"):
        try:
            return raw.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise ReportFileError("File is not text")


def parse_sheet_date(value: str) -> Optional[str]:
    value = value.strip()
    try:
        return datetime.strptime(value, "%d/%m/%Y").date().isoformat()
    except ValueError:
        pass
    d = parse_date(value[:10])
    return d.isoformat() if d else None


def parse_amount(value: str) -> Optional[float]:
    value = value.strip().replace(" ", "")
    if "," in value and "." in value:
        # the later separator is the decimal one
        if value.rfind(",") > value.rfind("."):
            value = value.replace(".", "").replace(",", ".")
        else:
            value = value.replace(",", "")
    elif "," in value:
        value = value.replace(",", ".")
    try:
        return float(value)
    except ValueError:
        return None


def _delimiter(text: str) -> str:
    # spreadsheets in pt locales export with semicolons
    header = text.splitlines()[0] if text else ""
    return ";" if header.count(";") > header.count(",") else ","


def parse_transactions(text: str) -> Tuple[List[Dict[str, Any]], List[str]]:
    """Returns (valid rows, per-line error messages); line numbers count the header as 1."""
    transactions: List[Dict[str, Any]] = []
    errors: List[str] = []

    reader = csv.reader(io.StringIO(text), delimiter=_delimiter(text))
    for line_no, row in enumerate(reader, start=1):
        if line_no == 1 or not any(cell.strip() for cell in row):
            continue
        cells = [c.strip() for c in row] + [""] * (5 - len(row))
        date_raw, description, category, type_raw, amount_raw = cells[:5]

        if not (date_raw and description and category and type_raw and amount_raw):
            errors.append(f"Linha {line_no}: Campos obrigatórios faltando")
            continue

        tx_type = TYPE_NAMES.get(type_raw.upper())
        if tx_type is None:
            errors.append(f"Linha {line_no}: Tipo deve ser INCOME/EXPENSE/RECEITA/DESPESA")
            continue

        date_iso = parse_sheet_date(date_raw)
        if date_iso is None:
            errors.append(f"Linha {line_no}: Data inválida")
            continue

        amount = parse_amount(amount_raw)
        if amount is None or amount <= 0:
            errors.append(f"Linha {line_no}: Valor deve ser positivo")
            continue

        transactions.append(
            {"date": date_iso, "description": description, "category": category, "type": tx_type, "amount": amount}
        )

    logger.debug("parsed %s rows, %s errors", len(transactions), len(errors))
    return transactions, errors
