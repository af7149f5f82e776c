"""
AgriTrace: Commodity Traceability and EUDR Compliance
=====================================================

AgriTrace tracks agricultural commodity batches from farm collection to
delivery and gates EU Deforestation Regulation compliance certificates.
The compliance workflow engine lives in ``agritrace.eudr_workflow``.
"""

__version__ = "1.0.0"

__author__ = "AgriTrace Team"
__license__ = "MIT"
