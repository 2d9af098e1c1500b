"""
Disbursement Module - Moving allocated money out

Disbursements, payment channel settlement, revocation and rebatching.
Every money movement is a Transaction on the budget stream; the budget's
disbursed amount is the sum of the COMPLETED ones.
"""
