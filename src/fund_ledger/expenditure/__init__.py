"""
Expenditure Module - Recording spend against a funded budget
"""
