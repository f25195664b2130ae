"""
Hourly Payroll Ledger
=====================
Monthly payroll for hourly-paid employees: master-file loading, pay-file
ingestion with duplicate-month handling, flat-rate income tax above an
annual allowance, month summaries, rankings and per-employee totals.
Flat-file output only (per-month report files plus an append-only error log).
"""

from __future__ import annotations

import argparse
import csv
import io
import logging
import sys
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

EMPLOYEES_FILE = Path("employees.txt")
ERROR_LOG_FILE = Path("errors.txt")
OUTPUT_SUFFIX = "_output.txt"
PAY_FILE_EXT = ".txt"
CURRENCY = "£"

logging.basicConfig(format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
logger = logging.getLogger("payroll")

PRECISION = Decimal("0.01")
ZERO = Decimal("0")

# ─── Tax Constants (UK basic rate) ───────────────────────────────────────────
TAX_FREE_ALLOWANCE = Decimal("12570")
TAX_RATE = Decimal("0.20")
MONTHS_IN_YEAR = 12

YES = "y"
NO = "n"
RETURN = "0"


# ─── Enumerations ─────────────────────────────────────────────────────────────
class IngestOutcome(str, Enum):
    PROCESSED = "processed"
    DECLINED = "declined"      # month already loaded, replace refused
    NOT_FOUND = "not_found"    # pay file missing or unreadable


class RankCriterion(str, Enum):
    HOURLY_RATE = "rate"
    HOURS_WORKED = "hours"
    NET_PAY = "net"

    @property
    def label(self) -> str:
        return {"rate": "Hourly Rate", "hours": "Hours Worked", "net": "Net Pay"}[self.value]


# ─── Helpers ──────────────────────────────────────────────────────────────────
def _dec(val) -> Decimal:
    return val if isinstance(val, Decimal) else Decimal(str(val))


def normalize_id(raw: str) -> str:
    return raw.strip().upper()


def month_code_for(path) -> str:
    """Month code for a pay file: ``data/jan25.txt`` -> ``JAN25``."""
    return Path(str(path).strip()).stem.strip().upper()


def money(val: Decimal) -> str:
    val = _dec(val)
    with localcontext() as ctx:
        # quantize fails if the result needs more digits than the context holds
        ctx.prec = max(ctx.prec, val.adjusted() + 4)
        return str(val.quantize(PRECISION, rounding=ROUND_HALF_UP))


# ─── Data Classes ─────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class TaxPolicy:
    tax_free_allowance: Decimal = TAX_FREE_ALLOWANCE   # Annual
    tax_rate: Decimal = TAX_RATE
    months_in_year: int = MONTHS_IN_YEAR

    def __post_init__(self):
        object.__setattr__(self, "tax_free_allowance", _dec(self.tax_free_allowance))
        object.__setattr__(self, "tax_rate", _dec(self.tax_rate))


DEFAULT_POLICY = TaxPolicy()


# ─── Tax Calculation ──────────────────────────────────────────────────────────
def gross_pay(rate, hours) -> Decimal:
    return _dec(rate) * _dec(hours)


def monthly_tax(rate, hours, policy: TaxPolicy = DEFAULT_POLICY) -> Decimal:
    """Project the month's gross to a year, tax whatever exceeds the
    allowance at the flat rate, and return one month's share of it.

    Negative rate or hours are not rejected here; the arithmetic passes
    them through unchanged (taxable income is floored at zero)."""
    months = Decimal(policy.months_in_year)
    annual = gross_pay(rate, hours) * months
    taxable = max(ZERO, annual - policy.tax_free_allowance)
    return taxable * policy.tax_rate / months


def net_pay(rate, hours, policy: TaxPolicy = DEFAULT_POLICY) -> Decimal:
    return gross_pay(rate, hours) - monthly_tax(rate, hours, policy)


@dataclass
class Employee:
    id: str
    name: str
    hourly_rate: Decimal
    hours_worked: Dict[str, Decimal] = field(default_factory=dict)  # month -> hours

    def __post_init__(self):
        self.id = normalize_id(self.id)
        self.name = self.name.strip()
        self.hourly_rate = _dec(self.hourly_rate)
        self.hours_worked = {m: _dec(h) for m, h in self.hours_worked.items()}

    def hours_for(self, month: str) -> Decimal:
        return self.hours_worked.get(month, ZERO)

    def gross(self, month: str) -> Decimal:
        return gross_pay(self.hourly_rate, self.hours_for(month))

    def tax(self, month: str, policy: TaxPolicy = DEFAULT_POLICY) -> Decimal:
        return monthly_tax(self.hourly_rate, self.hours_for(month), policy)

    def net(self, month: str, policy: TaxPolicy = DEFAULT_POLICY) -> Decimal:
        return net_pay(self.hourly_rate, self.hours_for(month), policy)


@dataclass
class EmployeeTotals:
    employee_id: str
    name: str
    months: int
    gross: Decimal
    tax: Decimal
    net: Decimal


@dataclass
class PayRow:
    employee_id: str
    name: str
    rate: Decimal
    hours: Decimal
    gross: Decimal
    tax: Decimal
    net: Decimal

    @classmethod
    def for_month(cls, emp: Employee, month: str, policy: TaxPolicy) -> "PayRow":
        return cls(
            employee_id=emp.id, name=emp.name, rate=emp.hourly_rate,
            hours=emp.hours_for(month), gross=emp.gross(month),
            tax=emp.tax(month, policy), net=emp.net(month, policy),
        )


@dataclass
class MonthRow:
    month: str
    hours: Decimal
    gross: Decimal
    tax: Decimal
    net: Decimal


@dataclass
class IngestError:
    source: str
    message: str


@dataclass
class IngestResult:
    month: str
    outcome: IngestOutcome
    errors: Tuple[IngestError, ...] = ()
    applied: int = 0    # lines that set hours for a known employee
    skipped: int = 0    # malformed lines, silently ignored

    @property
    def processed(self) -> bool:
        return self.outcome == IngestOutcome.PROCESSED


# ─── Input Validation ─────────────────────────────────────────────────────────
@dataclass
class Validation:
    """Either a parsed value or the reason the input was rejected."""
    value: object = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.reason is None


def parse_decimal(token: str) -> Validation:
    try:
        value = Decimal(token.strip())
    except InvalidOperation:
        return Validation(reason=f"{token!r} is not a number")
    if not value.is_finite():
        return Validation(reason=f"{token!r} is not a finite number")
    return Validation(value)


def parse_employee_line(line: str) -> Validation:
    """``id name rate``; names may span several tokens, the rate is last."""
    tokens = line.split()
    if len(tokens) < 3:
        return Validation(reason="expected 'id name rate'")
    rate = parse_decimal(tokens[-1])
    if not rate.ok:
        return rate
    if rate.value < 0:
        return Validation(reason="negative hourly rate")
    return Validation(Employee(tokens[0], " ".join(tokens[1:-1]), rate.value))


def parse_pay_line(line: str) -> Validation:
    """``id hours`` -> (normalized id, hours)."""
    tokens = line.split()
    if len(tokens) != 2:
        return Validation(reason="expected 'id hours'")
    hours = parse_decimal(tokens[1])
    if not hours.ok:
        return hours
    if hours.value < 0:
        return Validation(reason="negative hours")
    return Validation((normalize_id(tokens[0]), hours.value))


def parse_menu_choice(raw: str, low: int, high: int) -> Validation:
    try:
        value = int(raw.strip())
    except ValueError:
        return Validation(reason="Invalid input. Please enter a valid number.")
    if not low <= value <= high:
        return Validation(reason=f"Invalid input. Please enter a number between {low} and {high}.")
    return Validation(value)


def parse_yes_no(raw: str) -> Validation:
    answer = raw.strip().lower()[:1]
    if answer == YES:
        return Validation(True)
    if answer == NO:
        return Validation(False)
    return Validation(reason="Invalid input. Please enter 'y' or 'n'.")


# ─── Ledger ───────────────────────────────────────────────────────────────────
class PayrollLedger:
    def __init__(self, employees: Iterable[Employee] = (), policy: TaxPolicy = DEFAULT_POLICY):
        self.policy = policy
        self.employees: Dict[str, Employee] = {}
        self.processed_months: List[str] = []    # insertion order
        for emp in employees:
            self._put(emp)

    @classmethod
    def from_file(cls, path: Path = EMPLOYEES_FILE, policy: TaxPolicy = DEFAULT_POLICY) -> "PayrollLedger":
        ledger = cls(policy=policy)
        ledger.load_employees(path)
        return ledger

    def _put(self, emp: Employee):
        if emp.id in self.employees:
            logger.debug("Duplicate employee %s, keeping the later record", emp.id)
        self.employees[emp.id] = emp

    def load_employees(self, path: Path) -> int:
        """Read the master file; malformed lines are skipped. Raises OSError
        if the file cannot be opened."""
        path = Path(path)
        loaded = 0
        with path.open(encoding="utf-8", errors="replace") as fh:
            for lineno, line in enumerate(fh, 1):
                parsed = parse_employee_line(line)
                if not parsed.ok:
                    logger.debug("%s:%d skipped: %s", path, lineno, parsed.reason)
                    continue
                self._put(parsed.value)
                loaded += 1
        logger.info("Loaded %d employee records from %s", loaded, path)
        return loaded

    def get_employee(self, raw_id: str) -> Optional[Employee]:
        return self.employees.get(normalize_id(raw_id))

    def require_employee(self, raw_id: str) -> Employee:
        emp = self.get_employee(raw_id)
        if emp is None:
            raise ValueError(f"Employee {normalize_id(raw_id)} not found")
        return emp

    def iter_employees(self) -> Iterator[Employee]:
        for emp_id in sorted(self.employees):
            yield self.employees[emp_id]

    def employees_for_month(self, month: str) -> List[Employee]:
        return [e for e in self.iter_employees() if month in e.hours_worked]

    def is_processed(self, month: str) -> bool:
        return month in self.processed_months

    def record_hours(self, raw_id: str, month: str, hours) -> bool:
        emp = self.get_employee(raw_id)
        if emp is None:
            return False
        emp.hours_worked[month] = _dec(hours)
        return True

    def register_month(self, month: str):
        if month not in self.processed_months:
            self.processed_months.append(month)

    def remove_month(self, month: str) -> int:
        """Clear every employee's hours for month and forget the month."""
        cleared = 0
        for emp in self.employees.values():
            if emp.hours_worked.pop(month, None) is not None:
                cleared += 1
        if month in self.processed_months:
            self.processed_months.remove(month)
        return cleared

    # Totals are sums of per-month figures; tax is never recomputed on a summed gross.
    def total_gross(self, raw_id: str) -> Decimal:
        emp = self.require_employee(raw_id)
        return sum((emp.gross(m) for m in emp.hours_worked), ZERO)

    def total_tax(self, raw_id: str) -> Decimal:
        emp = self.require_employee(raw_id)
        return sum((emp.tax(m, self.policy) for m in emp.hours_worked), ZERO)

    def total_net(self, raw_id: str) -> Decimal:
        emp = self.require_employee(raw_id)
        return sum((emp.net(m, self.policy) for m in emp.hours_worked), ZERO)

    def employee_totals(self, raw_id: str) -> EmployeeTotals:
        emp = self.require_employee(raw_id)
        return EmployeeTotals(
            employee_id=emp.id,
            name=emp.name,
            months=len(emp.hours_worked),
            gross=self.total_gross(emp.id),
            tax=self.total_tax(emp.id),
            net=self.total_net(emp.id),
        )


# ─── Error Log ────────────────────────────────────────────────────────────────
class ErrorLog:
    """Append-only flat file: each error is the source path on one line and
    the message on the next. Never truncated."""

    def __init__(self, path: Path = ERROR_LOG_FILE):
        self.path = Path(path)

    def append(self, errors: Sequence[IngestError]) -> int:
        if not errors:
            return 0
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as fh:
            for err in errors:
                fh.write(f"{err.source}\n{err.message}\n")
        return len(errors)


# ─── Pay File Ingestion ───────────────────────────────────────────────────────
ConfirmReplace = Callable[[str], bool]


class PayFileIngester:
    def __init__(self, ledger: PayrollLedger, error_log: Optional[ErrorLog] = None):
        self.ledger = ledger
        self.error_log = error_log

    def ingest(self, path, replace: bool = False,
               confirm: Optional[ConfirmReplace] = None) -> IngestResult:
        """Load one month of hours from a pay file.

        If the month was loaded before, ``replace`` (or a ``confirm(month)``
        that returns True) clears the old month first; otherwise nothing
        changes and the outcome is DECLINED. Errors collected during the call
        are written to the error log once and returned on the result."""
        source = str(path)
        month = month_code_for(path)

        if self.ledger.is_processed(month):
            if not replace and not (confirm is not None and confirm(month)):
                logger.warning("Month %s already processed, replace declined", month)
                return IngestResult(month, IngestOutcome.DECLINED)
            cleared = self.ledger.remove_month(month)
            logger.info("Replacing month %s (%d entries cleared)", month, cleared)

        errors: List[IngestError] = []
        try:
            fh = open(path, encoding="utf-8", errors="replace")
        except OSError:
            errors.append(IngestError(source, f"Pay file {source} could not be found."))
            logger.warning("Pay file %s could not be found", source)
            self._flush(errors)
            return IngestResult(month, IngestOutcome.NOT_FOUND, tuple(errors))

        applied = skipped = 0
        with fh:
            for lineno, line in enumerate(fh, 1):
                parsed = parse_pay_line(line)
                if not parsed.ok:
                    # Malformed lines are skipped without logging an error.
                    logger.debug("%s:%d skipped: %s", source, lineno, parsed.reason)
                    skipped += 1
                    continue
                emp_id, hours = parsed.value
                if self.ledger.record_hours(emp_id, month, hours):
                    applied += 1
                else:
                    errors.append(IngestError(source, f"{emp_id} is not a valid employee ID number."))

        self.ledger.register_month(month)
        if errors:
            logger.warning("%s: %d unknown employee IDs", source, len(errors))
        self._flush(errors)
        logger.info("Processed %s as %s (%d applied, %d skipped)", source, month, applied, skipped)
        return IngestResult(month, IngestOutcome.PROCESSED, tuple(errors), applied, skipped)

    def _flush(self, errors: List[IngestError]):
        if self.error_log is not None:
            self.error_log.append(errors)


# ─── Reporting ────────────────────────────────────────────────────────────────
_RANK_KEYS: Dict[RankCriterion, Callable[[PayRow], Decimal]] = {
    RankCriterion.HOURLY_RATE: lambda row: row.rate,
    RankCriterion.HOURS_WORKED: lambda row: row.hours,
    RankCriterion.NET_PAY: lambda row: row.net,
}

# (header, width, align)
COLUMNS = [
    ("ID", 8, "<"),
    ("Name", 18, "<"),
    (f"Rate({CURRENCY})", 10, ">"),
    ("Hours", 8, ">"),
    (f"Gross({CURRENCY})", 12, ">"),
    (f"Tax({CURRENCY})", 10, ">"),
    (f"Net({CURRENCY})", 12, ">"),
]


def _fit(values: Sequence[str]) -> str:
    return "".join(f"{v:{align}{width}}" for v, (_, width, align) in zip(values, COLUMNS))


def table_header() -> str:
    return _fit([c[0] for c in COLUMNS])


def format_row(row: PayRow) -> str:
    return _fit([
        row.employee_id, row.name, money(row.rate), money(row.hours),
        money(row.gross), money(row.tax), money(row.net),
    ])


class ReportEngine:
    """Read-only views over a ledger."""

    def __init__(self, ledger: PayrollLedger, policy: Optional[TaxPolicy] = None):
        self.ledger = ledger
        self.policy = policy or ledger.policy

    def month_summary(self, month: str) -> List[PayRow]:
        return [PayRow.for_month(e, month, self.policy) for e in self.ledger.employees_for_month(month)]

    def rank_employees(self, month: str, criterion: RankCriterion) -> List[PayRow]:
        """Descending by criterion. The sort is stable over ID-ordered rows,
        so ties stay in ascending employee-ID order."""
        key = _RANK_KEYS[RankCriterion(criterion)]
        return sorted(self.month_summary(month), key=key, reverse=True)

    def employee_breakdown(self, raw_id: str) -> List[MonthRow]:
        emp = self.ledger.require_employee(raw_id)
        return [
            MonthRow(m, hours, emp.gross(m), emp.tax(m, self.policy), emp.net(m, self.policy))
            for m, hours in emp.hours_worked.items()
        ]

    def month_table(self, month: str, rows: Optional[List[PayRow]] = None) -> str:
        rows = self.month_summary(month) if rows is None else rows
        return "\n".join([table_header()] + [format_row(r) for r in rows]) + "\n"

    def write_month_output(self, month: str, directory: Path = Path(".")) -> Path:
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        out = directory / f"{month.lower()}{OUTPUT_SUFFIX}"
        out.write_text(self.month_table(month), encoding="utf-8")
        logger.info("Wrote pay details for %s to %s", month, out)
        return out

    def export_month_csv(self, month: str) -> str:
        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(["Employee ID", "Name", "Rate", "Hours", "Gross", "Tax", "Net"])
        for r in self.month_summary(month):
            writer.writerow([
                r.employee_id, r.name, money(r.rate), money(r.hours),
                money(r.gross), money(r.tax), money(r.net),
            ])
        return output.getvalue()


def render_month_summary(month: str, table: str) -> str:
    return "\n".join([
        "=" * 70,
        f"Monthly Summary: {month}",
        "-" * 70,
        table.rstrip("\n"),
        "=" * 70,
    ])


def render_breakdown(emp: Employee, rows: List[MonthRow]) -> str:
    lines = [
        "=" * 60,
        f"Details for {emp.id} ({emp.name})",
        "-" * 60,
        f"{'Month':<12}{'Hours':>8}{'Gross(' + CURRENCY + ')':>13}{'Tax(' + CURRENCY + ')':>13}{'Net(' + CURRENCY + ')':>13}",
        "-" * 60,
    ]
    total_gross = total_tax = total_net = ZERO
    for r in rows:
        lines.append(f"{r.month:<12}{money(r.hours):>8}{money(r.gross):>13}{money(r.tax):>13}{money(r.net):>13}")
        total_gross += r.gross
        total_tax += r.tax
        total_net += r.net
    lines.append("-" * 60)
    lines.append(f"{'Totals:':<12}{'':>8}{money(total_gross):>13}{money(total_tax):>13}{money(total_net):>13}")
    lines.append("=" * 60)
    return "\n".join(lines)


def render_totals(t: EmployeeTotals) -> str:
    return "\n".join([
        "=" * 50,
        f"Totals for {t.employee_id} ({t.name}):",
        "-" * 50,
        f"{'Total Gross:':<16}{CURRENCY}{money(t.gross)}",
        f"{'Total Tax:':<16}{CURRENCY}{money(t.tax)}",
        f"{'Total Net:':<16}{CURRENCY}{money(t.net)}",
        "=" * 50,
    ])


# ─── Interactive Menu ─────────────────────────────────────────────────────────
def prompt_choice(prompt: str, low: int, high: int, read=input, write=print) -> int:
    while True:
        result = parse_menu_choice(read(prompt), low, high)
        if result.ok:
            return result.value
        write(result.reason)


def prompt_yes_no(prompt: str, read=input, write=print) -> bool:
    while True:
        result = parse_yes_no(read(prompt))
        if result.ok:
            return result.value
        write(result.reason)


class PayrollMenu:
    QUIT = 0
    PROCESS_PAY_FILE = 1
    VIEW_ALL_SALARY = 2
    VIEW_INDIVIDUAL = 3
    SORT_EMPLOYEES = 4
    VIEW_EMPLOYEE_TOTALS = 5

    def __init__(self, ingester: PayFileIngester, engine: ReportEngine,
                 output_dir: Path = Path("."), read=input, write=print):
        self.ingester = ingester
        self.engine = engine
        self.ledger = engine.ledger
        self.output_dir = Path(output_dir)
        self.read = read
        self.write = write

    def choose(self, prompt: str, low: int, high: int) -> int:
        return prompt_choice(prompt, low, high, self.read, self.write)

    def confirm_replace(self, month: str) -> bool:
        return prompt_yes_no(
            f"Month {month} has already been processed.\nDo you want to replace it? (y/n): ",
            self.read, self.write,
        )

    def run(self):
        self.write("Welcome to the Payroll System")
        handlers = {
            self.PROCESS_PAY_FILE: self.process_pay_files,
            self.VIEW_ALL_SALARY: self.view_month_summaries,
            self.VIEW_INDIVIDUAL: self.show_employee_breakdown,
            self.SORT_EMPLOYEES: self.sort_employees,
            self.VIEW_EMPLOYEE_TOTALS: self.show_employee_totals,
        }
        try:
            while True:
                self.write("=" * 50)
                self.write("Main Menu:")
                self.write("-" * 50)
                self.write(f"{self.PROCESS_PAY_FILE}. Process Pay File")
                self.write(f"{self.VIEW_ALL_SALARY}. View All Salary Details")
                self.write(f"{self.VIEW_INDIVIDUAL}. View Individual Employee Details")
                self.write(f"{self.SORT_EMPLOYEES}. Sort Employees")
                self.write(f"{self.VIEW_EMPLOYEE_TOTALS}. View Employee Totals")
                self.write(f"{self.QUIT}. Quit")
                self.write("-" * 50)
                choice = self.choose("Enter choice: ", self.QUIT, self.VIEW_EMPLOYEE_TOTALS)
                if choice == self.QUIT:
                    break
                handlers[choice]()
        except EOFError:
            pass
        self.write("Goodbye!")

    def process_pay_files(self):
        while True:
            fname = self.read(f"Enter pay file to process (e.g., jan25{PAY_FILE_EXT}), or '{RETURN}' to return: ").strip()
            if fname == RETURN:
                return
            result = self.ingester.ingest(fname, confirm=self.confirm_replace)
            if result.outcome == IngestOutcome.NOT_FOUND:
                self.write(result.errors[0].message)
            elif result.processed:
                self.write(f"File {fname} processed successfully as month {result.month}.")
                out = self.engine.write_month_output(result.month, self.output_dir)
                self.write(f"Wrote pay details to {out}")

    def _pick_month(self, prompt: str) -> Optional[str]:
        months = self.ledger.processed_months
        self.write("Processed months: " + " ".join(f"{i}.{m}" for i, m in enumerate(months, 1)))
        idx = self.choose(prompt, 0, len(months))
        return months[idx - 1] if idx else None

    def _pick_employee(self, title: str) -> Optional[Employee]:
        employees = list(self.ledger.iter_employees())
        self.write("-" * 50)
        self.write(title)
        self.write("-" * 50)
        for i, emp in enumerate(employees, 1):
            self.write(f"{i:>3}. {emp.id} ({emp.name})")
        self.write("-" * 50)
        sel = self.choose("Select employee by number (or 0 to return): ", 0, len(employees))
        return employees[sel - 1] if sel else None

    def view_month_summaries(self):
        if not self.ledger.processed_months:
            self.write("No pay files processed yet.")
            return
        while True:
            month = self._pick_month("Enter number to view details, or 0 to return: ")
            if month is None:
                return
            self.write(render_month_summary(month, self.engine.month_table(month)))

    def show_employee_breakdown(self):
        emp = self._pick_employee("Select Employee")
        if emp is not None:
            self.write(render_breakdown(emp, self.engine.employee_breakdown(emp.id)))

    def show_employee_totals(self):
        emp = self._pick_employee("Employee List")
        if emp is not None:
            self.write(render_totals(self.ledger.employee_totals(emp.id)))

    def sort_employees(self):
        if not self.ledger.processed_months:
            self.write("No pay files processed yet.")
            return
        self.write("Sort Employees")
        month = self._pick_month("Choose month to sort by (or 0 to return): ")
        if month is None:
            return
        criteria = list(RankCriterion)
        self.write("Sort by:")
        for i, crit in enumerate(criteria, 1):
            self.write(f"{i}. {crit.label}")
        crit = criteria[self.choose("Enter choice: ", 1, len(criteria)) - 1]
        rows = self.engine.rank_employees(month, crit)
        self.write("-" * 70)
        self.write(self.engine.month_table(month, rows).rstrip("\n"))
        self.write("=" * 70)


# ─── CLI ───────────────────────────────────────────────────────────────────────
def _decimal_arg(text: str) -> Decimal:
    result = parse_decimal(text)
    if not result.ok:
        raise argparse.ArgumentTypeError(result.reason)
    return result.value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="payroll", description="Hourly Payroll Ledger")
    parser.add_argument("--employees", default=str(EMPLOYEES_FILE), help="Employee master file")
    parser.add_argument("--error-log", default=str(ERROR_LOG_FILE))
    parser.add_argument("--output-dir", default=".")
    parser.add_argument("--allowance", type=_decimal_arg, default=TAX_FREE_ALLOWANCE,
                        help="Annual tax-free allowance")
    parser.add_argument("--tax-rate", type=_decimal_arg, default=TAX_RATE)
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    pay = argparse.ArgumentParser(add_help=False)
    pay.add_argument("--yes", action="store_true", help="Replace already-loaded months without asking")

    sub.add_parser("menu", help="Interactive menu")

    p = sub.add_parser("process", parents=[pay], help="Process pay files and write month output")
    p.add_argument("payfiles", nargs="+")

    p = sub.add_parser("summary", parents=[pay], help="Monthly summary for each pay file")
    p.add_argument("payfiles", nargs="+")

    p = sub.add_parser("rank", parents=[pay], help="Rank employees for a month")
    p.add_argument("payfiles", nargs="+")
    p.add_argument("--month", default=None, help="Month code (default: last processed)")
    p.add_argument("--by", default=RankCriterion.NET_PAY.value,
                   choices=[c.value for c in RankCriterion])

    p = sub.add_parser("totals", parents=[pay], help="Totals and monthly breakdown for one employee")
    p.add_argument("employee_id")
    p.add_argument("payfiles", nargs="*")

    p = sub.add_parser("export", parents=[pay], help="Export a month as CSV")
    p.add_argument("payfiles", nargs="+")
    p.add_argument("--month", default=None)

    return parser


def _console_confirm(month: str) -> bool:
    try:
        return prompt_yes_no(
            f"Month {month} has already been processed.\nDo you want to replace it? (y/n): ")
    except EOFError:
        # no answer on a closed stdin counts as "no"
        print()
        return False


def _ingest_all(ingester: PayFileIngester, payfiles: List[str], replace: bool) -> List[IngestResult]:
    results = []
    for fname in payfiles:
        result = ingester.ingest(fname, replace=replace, confirm=_console_confirm)
        if result.outcome == IngestOutcome.NOT_FOUND:
            print(result.errors[0].message)
        elif result.outcome == IngestOutcome.DECLINED:
            print(f"Skipped {fname}: month {result.month} kept as previously loaded.")
        results.append(result)
    return results


def _resolve_month(ledger: PayrollLedger, month: Optional[str]) -> Optional[str]:
    if month is None:
        return ledger.processed_months[-1] if ledger.processed_months else None
    month = month.strip().upper()
    return month if ledger.is_processed(month) else None


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        logger.setLevel(logging.DEBUG)

    policy = TaxPolicy(tax_free_allowance=args.allowance, tax_rate=args.tax_rate)
    try:
        ledger = PayrollLedger.from_file(Path(args.employees), policy)
    except OSError:
        print(f"Error: Could not open {args.employees}")
        print("Cannot continue without employee records.")
        return 1

    ingester = PayFileIngester(ledger, ErrorLog(Path(args.error_log)))
    engine = ReportEngine(ledger)
    output_dir = Path(args.output_dir)

    if args.command == "menu":
        PayrollMenu(ingester, engine, output_dir).run()
        return 0

    results = _ingest_all(ingester, args.payfiles, args.yes)

    if args.command == "process":
        for r in results:
            if r.processed:
                print(f"File processed successfully as month {r.month} "
                      f"({r.applied} records, {len(r.errors)} errors).")
                print(f"Wrote pay details to {engine.write_month_output(r.month, output_dir)}")
        return 0 if all(r.outcome != IngestOutcome.NOT_FOUND for r in results) else 1

    elif args.command == "summary":
        for month in ledger.processed_months:
            print(render_month_summary(month, engine.month_table(month)))

    elif args.command == "rank":
        month = _resolve_month(ledger, args.month)
        if month is None:
            print("No matching processed month.")
            return 1
        crit = RankCriterion(args.by)
        print(f"{month} by {crit.label} (descending)")
        print(engine.month_table(month, engine.rank_employees(month, crit)), end="")

    elif args.command == "totals":
        try:
            emp = ledger.require_employee(args.employee_id)
        except ValueError as e:
            print(e)
            return 1
        print(render_breakdown(emp, engine.employee_breakdown(emp.id)))
        print(render_totals(ledger.employee_totals(emp.id)))

    elif args.command == "export":
        month = _resolve_month(ledger, args.month)
        if month is None:
            print("No matching processed month.")
            return 1
        print(engine.export_month_csv(month), end="")

    return 0


if __name__ == "__main__":
    sys.exit(main())
