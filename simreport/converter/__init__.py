"""
Compartment report conversion pipeline.

- ConverterConfig: run parameters
- Coordinator / convert: single-writer conversion, inline or with worker processes
- verify_conversion: frame-by-frame comparison of source and result
"""

from simreport.converter.config import ConverterConfig
from simreport.converter.coordinator import ConversionSummary, Coordinator, convert
from simreport.converter.partition import partition_entities
from simreport.converter.verify import VerificationResult, verify_conversion

__all__ = [
    "ConversionSummary",
    "ConverterConfig",
    "Coordinator",
    "VerificationResult",
    "convert",
    "partition_entities",
    "verify_conversion",
]
