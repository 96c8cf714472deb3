"""
Doc Medic Tests Package
=======================
Test suite for hyperlink indexing, repair, lookup and formatting.

Run all tests: python3 -m pytest tests/ -v
Run specific: python3 -m pytest tests/test_repair.py -v
"""

__version__ = "1.0.0"
