"""
Spreadsheet decoding for tabular memory imports.
"""

from .tabular_decoder import TabularChunk, TabularExcelDecoder, TabularExcelDecoderConfig, normalize_header_name

__all__ = ["TabularChunk", "TabularExcelDecoder", "TabularExcelDecoderConfig", "normalize_header_name"]
