"""
Supplementary Module - Requests for more money on a funded budget
"""
