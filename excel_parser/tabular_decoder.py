"""
Tabular Excel Decoder Module
Turns every data row of an .xlsx workbook into one chunk that keeps the
row's structure (column -> value) next to a readable text body.
"""

import datetime as dt
import io
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, BinaryIO, Dict, List, Optional, Union
import logging

import numpy as np
import pandas as pd
from openpyxl import load_workbook
from openpyxl.utils import get_column_letter
from pydantic import BaseModel, Field

from memory_db.records import (
    DEFAULT_JSON_OPTIONS,
    FILE_ID_TAG,
    SOURCE_INFO_KEY,
    TABULAR_DATA_KEY,
    TEXT_KEY,
    JsonOptions,
    MemoryRecord,
)
from memory_db.text_formats import ROW_NUMBER_KEY, WORKSHEET_NAME_KEY

logger = logging.getLogger(__name__)

XLSX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

WORKSHEET_COLUMN = "_worksheet"
ROW_NUMBER_COLUMN = "_rowNumber"

_INVALID_HEADER_CHARS = re.compile(r"[^\w]")
_REPEATED_UNDERSCORES = re.compile(r"_{2,}")


class TabularExcelDecoderConfig(BaseModel):
    """Options for TabularExcelDecoder"""
    use_first_row_as_header: bool = True
    header_row_index: int = Field(0, ge=0, description="Header position, relative to the first non-empty row")
    process_all_worksheets: bool = True
    worksheets_to_process: List[str] = Field(default_factory=list, description="Used when process_all_worksheets is False")
    blank_cell_value: str = ""
    date_format: str = "%Y-%m-%d"
    normalize_header_names: bool = True
    default_column_prefix: str = "Column"
    include_row_numbers: bool = True
    include_worksheet_names: bool = True
    skip_empty_rows: bool = True
    skip_hidden_rows: bool = True
    skip_hidden_columns: bool = True


def normalize_header_name(header: str) -> str:
    """'Server Name (FQDN)' -> 'Server_Name_FQDN'"""
    if not header:
        return header
    normalized = _INVALID_HEADER_CHARS.sub("_", header)
    normalized = _REPEATED_UNDERSCORES.sub("_", normalized)
    return normalized.strip("_")


@dataclass
class TabularChunk:
    """One worksheet row"""
    number: int
    worksheet_name: str
    row_number: int
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        lines = [f"Worksheet: {self.worksheet_name}, Row: {self.row_number}"]
        lines.extend(f"{key}: {value}" for key, value in self.data.items())
        return "\n".join(lines) + "\n"

    def source_info(self) -> Dict[str, str]:
        return {WORKSHEET_NAME_KEY: self.worksheet_name, ROW_NUMBER_KEY: str(self.row_number)}

    def to_memory_record(
        self,
        file_id: str,
        vector: Optional[List[float]] = None,
        tags: Optional[Dict[str, List[Optional[str]]]] = None,
        json_options: JsonOptions = DEFAULT_JSON_OPTIONS,
    ) -> MemoryRecord:
        """
        Build the record stored for this row.

        Args:
            file_id: Identifier of the imported file; rows of one file share a partition
            vector: Embedding of the chunk text
            tags: Extra tags
            json_options: Serialization options for the payload JSON

        Returns:
            MemoryRecord with text, tabular_data and source_info payload keys
        """
        record = MemoryRecord(
            id=f"{file_id}/{self.worksheet_name}/{self.row_number}",
            vector=list(vector or []),
            tags={key: list(values) for key, values in (tags or {}).items()},
            payload={
                TEXT_KEY: self.text,
                TABULAR_DATA_KEY: json_options.dumps(self.data),
                SOURCE_INFO_KEY: json_options.dumps(self.source_info()),
            },
        )
        record.add_tag(FILE_ID_TAG, file_id)
        return record


class TabularExcelDecoder:
    """Decodes .xlsx workbooks into one TabularChunk per data row."""

    def __init__(self, config: Optional[TabularExcelDecoderConfig] = None):
        self.config = config or TabularExcelDecoderConfig()

    @staticmethod
    def supports_mime_type(mime_type: Optional[str]) -> bool:
        return bool(mime_type) and mime_type.lower().startswith(XLSX_MIME_TYPE)

    def decode(self, source: Union[str, Path, bytes, BinaryIO]) -> List[TabularChunk]:
        """
        Decode a workbook.

        Args:
            source: File path, raw bytes or a binary file object

        Returns:
            Chunks in worksheet order, then row order
        """
        if isinstance(source, (bytes, bytearray)):
            source = io.BytesIO(source)

        logger.debug("Extracting tabular data from MS Excel file")
        chunks: List[TabularChunk] = []

        workbook = load_workbook(source, data_only=True)
        try:
            for worksheet in workbook.worksheets:
                if not self._should_process(worksheet.title):
                    continue

                logger.debug(f"Processing worksheet: {worksheet.title}")
                df = self._read_grid(worksheet)
                chunks.extend(self._decode_worksheet(worksheet.title, df, start_number=len(chunks) + 1))
        finally:
            workbook.close()

        logger.info(f"Decoded {len(chunks)} rows from workbook")
        return chunks

    def _should_process(self, worksheet_name: str) -> bool:
        if self.config.process_all_worksheets:
            return True
        wanted = {name.lower() for name in self.config.worksheets_to_process}
        return worksheet_name.lower() in wanted

    def _read_grid(self, worksheet) -> pd.DataFrame:
        """Raw cell grid; index and columns are 0-based sheet positions."""
        df = pd.DataFrame(list(worksheet.iter_rows(values_only=True)), dtype=object)

        if self.config.skip_hidden_rows:
            hidden = [label for label in df.index if worksheet.row_dimensions[label + 1].hidden]
            df = df.drop(index=hidden)
        if self.config.skip_hidden_columns:
            hidden = [
                column for column in df.columns
                if worksheet.column_dimensions[get_column_letter(column + 1)].hidden
            ]
            df = df.drop(columns=hidden)
        return df

    def _decode_worksheet(self, worksheet_name: str, df: pd.DataFrame, start_number: int) -> List[TabularChunk]:
        # restrict to the used range
        df = df.dropna(axis=1, how="all")
        non_empty = df.dropna(how="all")
        if non_empty.empty:
            logger.debug(f"Worksheet {worksheet_name} is empty")
            return []
        df = df.loc[non_empty.index[0]:non_empty.index[-1]]

        column_names = self._column_names(df)
        rows = df
        if self.config.use_first_row_as_header:
            rows = df.iloc[self.config.header_row_index + 1:]

        chunks: List[TabularChunk] = []
        for label, row in rows.iterrows():
            if self.config.skip_empty_rows and row.isna().all():
                continue

            row_number = int(label) + 1
            data: Dict[str, Any] = {}
            if self.config.include_worksheet_names:
                data[WORKSHEET_COLUMN] = worksheet_name
            if self.config.include_row_numbers:
                data[ROW_NUMBER_COLUMN] = row_number

            for column, value in row.items():
                data[column_names[column]] = self._cell_value(value)

            chunks.append(TabularChunk(
                number=start_number + len(chunks),
                worksheet_name=worksheet_name,
                row_number=row_number,
                data=data,
            ))
        return chunks

    def _column_names(self, df: pd.DataFrame) -> Dict[Any, str]:
        names: Dict[Any, str] = {}
        header: Optional[pd.Series] = None
        if self.config.use_first_row_as_header and self.config.header_row_index < len(df):
            header = df.iloc[self.config.header_row_index]

        for column in df.columns:
            text = ""
            if header is not None and not pd.isna(header[column]):
                text = str(header[column])
                if self.config.normalize_header_names:
                    text = normalize_header_name(text)
            if not text.strip():
                text = f"{self.config.default_column_prefix}{int(column) + 1}"
            names[column] = text
        return names

    def _cell_value(self, value: Any) -> Any:
        if value is None or (not isinstance(value, str) and pd.isna(value)):
            return self.config.blank_cell_value
        if isinstance(value, (pd.Timestamp, dt.datetime, dt.date)):
            return value.strftime(self.config.date_format)
        if isinstance(value, dt.time):
            return value.isoformat()
        if isinstance(value, np.generic):
            return value.item()
        return value
