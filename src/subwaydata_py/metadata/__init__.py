"""
The ledger of processed days and the calculation of which days are pending.
"""
