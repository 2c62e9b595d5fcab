"""Upload format detection and row streaming for CSV and Excel files."""
import csv
import logging
import zipfile
from pathlib import Path
from typing import Dict, Iterator, Union

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from wms.exceptions import UploadFormatError
from wms.services.normalizer import clean_value

logger = logging.getLogger(__name__)

CSV = "csv"
XLSX = "xlsx"

FILE_TYPES = {
    ".csv": CSV,
    ".txt": CSV,
    ".xlsx": XLSX,
    ".xlsm": XLSX,
}

CSV_ENCODING = "utf-8-sig"  # tolerate the BOM Excel writes into CSV exports

PathLike = Union[str, Path]


def detect_format(filename: str) -> str:
    """
    Sniff the upload format from the file extension.

    Raises:
        UploadFormatError: Unsupported extension (including legacy .xls)
    """
    suffix = Path(filename or "").suffix.lower()
    if suffix == ".xls":
        raise UploadFormatError(
            "Legacy .xls workbooks are not supported, save the file as .xlsx or .csv"
        )
    try:
        return FILE_TYPES[suffix]
    except KeyError:
        allowed = ", ".join(sorted(FILE_TYPES))
        raise UploadFormatError(f"Unsupported file type '{suffix}'. Allowed: {allowed}")


def _open_workbook(path: PathLike):
    try:
        return load_workbook(path, read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise UploadFormatError(f"Unreadable spreadsheet: {e}") from e


def validate_upload(path: PathLike, file_type: str) -> None:
    """
    Check that an upload has a header and at least one data row.

    Reading stops at the first data row; blank lines are passed over the
    same way the background import passes over them.

    Raises:
        UploadFormatError: The file is unreadable or holds no data rows
    """
    if file_type == XLSX:
        workbook = _open_workbook(path)
        try:
            if not workbook.worksheets:
                raise UploadFormatError("Workbook has no worksheets")
            rows = (
                row
                for row in workbook.worksheets[0].iter_rows(values_only=True)
                if any(value is not None for value in row)
            )
            header = next(rows, None)
            first_row = next(rows, None)
        finally:
            workbook.close()
    else:
        try:
            with open(path, newline="", encoding=CSV_ENCODING) as f:
                reader = csv.reader(f)
                # DictReader takes the first record as the header, blank or not
                header = next(reader, None)
                if header is not None and not any(header):
                    header = None
                first_row = next((row for row in reader if any(row)), None)
        except (UnicodeDecodeError, csv.Error) as e:
            raise UploadFormatError(f"Unreadable CSV file: {e}") from e

    if header is None or first_row is None:
        raise UploadFormatError("File is empty")


def convert_spreadsheet_to_csv(path: PathLike, csv_path: PathLike) -> int:
    """
    Stream the first worksheet of a workbook into a CSV file.

    Args:
        path: Workbook path
        csv_path: Where to write the intermediate CSV

    Returns:
        Number of rows written, header included
    """
    workbook = _open_workbook(path)
    written = 0
    try:
        if not workbook.worksheets:
            raise UploadFormatError("Workbook has no worksheets")
        worksheet = workbook.worksheets[0]
        with open(csv_path, "w", newline="", encoding="utf-8") as out:
            writer = csv.writer(out)
            for row in worksheet.iter_rows(values_only=True):
                if not any(value is not None for value in row):
                    continue
                writer.writerow(
                    [clean_value(value) or "" for value in row]
                )
                written += 1
    finally:
        workbook.close()

    logger.info(f"📄 Converted spreadsheet {path} -> {csv_path} ({written} rows)")
    return written


def iter_csv_rows(path: PathLike) -> Iterator[Dict[str, str]]:
    """Lazily yield one dict per CSV data row; the file is never read ahead."""
    with open(path, newline="", encoding=CSV_ENCODING) as f:
        for row in csv.DictReader(f):
            yield row
